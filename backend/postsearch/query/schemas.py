"""Pydantic schemas for the query surface."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from postsearch.index.codec import IndexedDocument

SortMode = Literal["relevance", "date", "views", "votes"]

_SNIPPET_CHARS = 280


class SearchHit(BaseModel):
	id: int
	title: str
	snippet: str
	category_id: Optional[int] = None
	created_at: datetime
	views: int = Field(default=0, ge=0)
	up_votes: int = 0
	down_votes: int = 0
	net_votes: int = 0
	authors: list[str] = Field(default_factory=list)
	score: float = 0.0

	@classmethod
	def from_document(cls, document: IndexedDocument, *, score: float) -> "SearchHit":
		return cls(
			id=document.id,
			title=document.title,
			snippet=document.excerpt[:_SNIPPET_CHARS],
			category_id=document.category_id,
			created_at=document.created_at,
			views=document.views,
			up_votes=document.up_votes,
			down_votes=document.down_votes,
			net_votes=document.net_votes,
			authors=list(document.authors),
			score=score,
		)


class SearchPage(BaseModel):
	items: list[SearchHit]
	total: int = Field(..., ge=0)
	query: str = ""
	sort_by: SortMode = "relevance"
	category_id: Optional[int] = None
	limit: int
	offset: int = 0


class SuggestionsResponse(BaseModel):
	items: list[str] = Field(default_factory=list)
