"""Primary-store records consumed by the indexer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

PUBLISHED = "PUBLISHED"


class PostRecord(BaseModel):
	"""A post as read from the primary store, with its aggregates joined in."""

	id: int
	title: str
	prompt: str = ""
	content_blocks: Any = None
	category_id: Optional[int] = None
	status: str = PUBLISHED
	is_latest: bool = True
	created_at: datetime
	views: int = 0
	source_clicks: int = 0
	up_votes: int = 0
	down_votes: int = 0
	authors: list[str] = Field(default_factory=list)

	model_config = ConfigDict(from_attributes=True)

	@property
	def searchable(self) -> bool:
		"""Only the latest revision of a published post belongs in the index."""
		return self.status == PUBLISHED and self.is_latest


__all__ = ["PostRecord", "PUBLISHED"]
