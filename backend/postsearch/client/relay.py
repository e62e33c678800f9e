"""Forwards index events from Redis pub/sub into a reactive store."""

from __future__ import annotations

import logging

from postsearch.client.store import ReactiveStore
from postsearch.index import keys
from postsearch.index.events import IndexEvent
from postsearch.infra.redis import RedisProxy, redis_client

_LOG = logging.getLogger(__name__)


class IndexEventRelay:
	"""Subscribes to the index event channel until :meth:`stop` is called."""

	def __init__(
		self,
		store: ReactiveStore,
		*,
		redis: RedisProxy | None = None,
		channel: str = keys.EVENTS_CHANNEL,
		poll_timeout: float = 1.0,
	) -> None:
		self.store = store
		self.redis = redis or redis_client
		self.channel = channel
		self.poll_timeout = poll_timeout
		self._running = False

	async def run_forever(self) -> None:
		self._running = True
		pubsub = self.redis.pubsub()
		await pubsub.subscribe(self.channel)
		try:
			while self._running:
				message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self.poll_timeout)
				if message and message.get("type") == "message":
					self._dispatch(message["data"])
		finally:
			await pubsub.unsubscribe(self.channel)
			await pubsub.aclose()

	def stop(self) -> None:
		self._running = False

	def _dispatch(self, raw: str | bytes) -> bool:
		try:
			event = IndexEvent.from_json(raw)
		except (ValueError, TypeError, AttributeError):
			_LOG.warning("index_event_relay.message_invalid", extra={"channel": self.channel})
			return False
		self.store.handle_index_event(event)
		return True


__all__ = ["IndexEventRelay"]
