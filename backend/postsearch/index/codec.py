"""Document codec: the searchable projection of a post and its string form."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from postsearch.index import exceptions
from postsearch.primary.models import PostRecord


@dataclass(slots=True)
class IndexedDocument:
	"""Denormalized, search-optimized projection of a post."""

	id: int
	title: str
	excerpt: str
	created_at: datetime
	category_id: Optional[int] = None
	views: int = 0
	up_votes: int = 0
	down_votes: int = 0
	authors: list[str] = field(default_factory=list)

	@property
	def net_votes(self) -> int:
		return self.up_votes - self.down_votes

	@property
	def created_ts(self) -> float:
		return _as_utc(self.created_at).timestamp()

	def to_payload(self) -> dict[str, Any]:
		payload = asdict(self)
		payload["created_at"] = _as_utc(self.created_at).isoformat()
		return payload


def _as_utc(value: datetime) -> datetime:
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


def encode(document: IndexedDocument) -> str:
	return json.dumps(document.to_payload(), separators=(",", ":"), sort_keys=True)


def from_payload(data: dict[str, Any]) -> IndexedDocument:
	return IndexedDocument(
		id=int(data["id"]),
		title=str(data.get("title") or ""),
		excerpt=str(data.get("excerpt") or ""),
		created_at=_as_utc(datetime.fromisoformat(data["created_at"])),
		category_id=int(data["category_id"]) if data.get("category_id") is not None else None,
		views=int(data.get("views") or 0),
		up_votes=int(data.get("up_votes") or 0),
		down_votes=int(data.get("down_votes") or 0),
		authors=[str(name) for name in data.get("authors") or []],
	)


def decode(raw: str | bytes, *, key: str = "") -> IndexedDocument:
	try:
		text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
		return from_payload(json.loads(text))
	except (ValueError, KeyError, TypeError) as exc:
		raise exceptions.DocumentDecodeError(key) from exc


_LIST_BLOCKS = frozenset({"list", "numbered_list"})
_MEDIA_BLOCKS = frozenset({"image", "video", "divider"})


def _block_text(block: Any) -> Iterable[str]:
	if isinstance(block, str):
		yield block
		return
	if not isinstance(block, dict):
		return
	content = block.get("content")
	if not isinstance(content, str):
		return
	block_type = block.get("type")
	if block_type in _MEDIA_BLOCKS:
		return
	if block_type in _LIST_BLOCKS:
		try:
			items = json.loads(content)
		except ValueError:
			yield content
			return
		if isinstance(items, list):
			yield from (str(item) for item in items)
			return
	yield content


def extract_text(content_blocks: Any) -> str:
	"""Flatten stored content blocks into plain text.

	Accepts ``{"blocks": [...]}``, a bare list of blocks, or a JSON string of either.
	"""

	if content_blocks is None:
		return ""
	if isinstance(content_blocks, str):
		try:
			content_blocks = json.loads(content_blocks)
		except ValueError:
			return content_blocks
	if isinstance(content_blocks, dict):
		content_blocks = content_blocks.get("blocks") or []
	if not isinstance(content_blocks, list):
		return ""
	parts: list[str] = []
	for block in content_blocks:
		parts.extend(_block_text(block))
	return " ".join(parts)


def build_excerpt(record: PostRecord, *, max_chars: int) -> str:
	text = " ".join(filter(None, [record.prompt, extract_text(record.content_blocks)]))
	collapsed = " ".join(text.split())
	return collapsed[:max_chars]


def from_record(record: PostRecord, *, max_chars: int = 2000) -> IndexedDocument:
	return IndexedDocument(
		id=record.id,
		title=record.title,
		excerpt=build_excerpt(record, max_chars=max_chars),
		created_at=_as_utc(record.created_at),
		category_id=record.category_id,
		views=record.views,
		up_votes=record.up_votes,
		down_votes=record.down_votes,
		authors=list(record.authors),
	)


__all__ = ["IndexedDocument", "encode", "decode", "from_payload", "from_record", "extract_text", "build_excerpt"]
