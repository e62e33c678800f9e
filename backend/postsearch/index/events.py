"""Invalidation notifications emitted by index writes."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional

from redis.exceptions import RedisError

from postsearch.index import keys
from postsearch.infra.redis import RedisProxy, redis_client

_LOG = logging.getLogger(__name__)

POST_INDEXED = "post_indexed"
POST_REMOVED = "post_removed"
INDEX_REBUILT = "index_rebuilt"
INDEX_CLEARED = "index_cleared"
EVENT_KINDS = frozenset({POST_INDEXED, POST_REMOVED, INDEX_REBUILT, INDEX_CLEARED})


@dataclass(slots=True, frozen=True)
class IndexEvent:
	kind: str
	post_id: Optional[int] = None
	ts: float = field(default_factory=time.time)

	def to_json(self) -> str:
		return json.dumps(asdict(self), separators=(",", ":"))

	@classmethod
	def from_json(cls, raw: str | bytes) -> "IndexEvent":
		data = json.loads(raw.decode("utf-8") if isinstance(raw, bytes) else raw)
		kind = data.get("kind")
		if kind not in EVENT_KINDS:
			raise ValueError(f"unknown index event kind: {kind!r}")
		post_id = data.get("post_id")
		return cls(kind=kind, post_id=int(post_id) if post_id is not None else None, ts=float(data.get("ts") or 0.0))


Listener = Callable[[IndexEvent], None]


class IndexEventPublisher:
	"""Fans events out to in-process listeners and the Redis pub/sub channel."""

	def __init__(self, redis: RedisProxy | None = None, *, channel: str = keys.EVENTS_CHANNEL) -> None:
		self.redis = redis or redis_client
		self.channel = channel
		self._listeners: list[Listener] = []

	def add_listener(self, listener: Listener) -> Callable[[], None]:
		self._listeners.append(listener)

		def _remove() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return _remove

	async def publish(self, event: IndexEvent) -> None:
		for listener in list(self._listeners):
			try:
				listener(event)
			except Exception:
				_LOG.exception("index_events.listener_failed", extra={"kind": event.kind})
		try:
			await self.redis.publish(self.channel, event.to_json())
		except RedisError:
			_LOG.warning("index_events.publish_failed", extra={"kind": event.kind, "post_id": event.post_id})


__all__ = [
	"IndexEvent",
	"IndexEventPublisher",
	"Listener",
	"POST_INDEXED",
	"POST_REMOVED",
	"INDEX_REBUILT",
	"INDEX_CLEARED",
	"EVENT_KINDS",
]
