"""Postgres LISTEN worker that keeps the index in step with post changes."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import asyncpg

from postsearch.index.indexer import IndexOutcome, SearchIndexer
from postsearch.obs import metrics as obs_metrics
from postsearch.settings import settings

_LOG = logging.getLogger(__name__)

Connect = Callable[[str], Awaitable[Any]]

POST_TABLE = "Post"


class ChangeListener:
	"""Listens on the change-notification channel and forwards to the indexer hooks.

	Payloads look like ``{"operation": "UPDATE", "table": "Post", "postId": 7}``.
	Insert, update and delete only apply to the ``Post`` table; comment and
	analytics updates re-index the referenced post regardless of table.
	"""

	def __init__(
		self,
		*,
		indexer: SearchIndexer | None = None,
		channel: str | None = None,
		dsn: str | None = None,
		restart_delay: float | None = None,
		connect: Connect | None = None,
	) -> None:
		self.indexer = indexer or SearchIndexer()
		self.channel = channel or settings.change_listener_channel
		self.dsn = dsn or settings.postgres_url
		self.restart_delay = settings.change_listener_restart_seconds if restart_delay is None else restart_delay
		self._connect = connect or asyncpg.connect
		self._running = False
		self._stopped = asyncio.Event()
		self._tasks: set[asyncio.Task] = set()

	async def run_forever(self) -> None:
		"""Hold a LISTEN connection open, reconnecting after failures until :meth:`stop`."""
		self._running = True
		self._stopped.clear()
		while self._running:
			try:
				await self._listen_once()
			except asyncio.CancelledError:
				raise
			except Exception:
				_LOG.exception("change_listener.connection_failed", extra={"channel": self.channel})
			if not self._running:
				break
			_LOG.info("change_listener.restarting", extra={"delay": self.restart_delay})
			try:
				await asyncio.wait_for(self._stopped.wait(), timeout=self.restart_delay)
			except asyncio.TimeoutError:
				continue

	def stop(self) -> None:
		"""Request the worker to stop; an open connection is closed promptly."""
		self._running = False
		self._stopped.set()

	async def drain(self) -> None:
		"""Wait for notifications already being handled."""
		if self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	async def _listen_once(self) -> None:
		conn = await self._connect(self.dsn)
		lost = asyncio.Event()
		conn.add_termination_listener(lambda _conn: lost.set())
		try:
			await conn.add_listener(self.channel, self._on_notification)
			_LOG.info("change_listener.listening", extra={"channel": self.channel})
			stop_wait = asyncio.ensure_future(self._stopped.wait())
			lost_wait = asyncio.ensure_future(lost.wait())
			try:
				await asyncio.wait({stop_wait, lost_wait}, return_when=asyncio.FIRST_COMPLETED)
			finally:
				stop_wait.cancel()
				lost_wait.cancel()
			if lost.is_set():
				_LOG.warning("change_listener.connection_lost", extra={"channel": self.channel})
		finally:
			if not conn.is_closed():
				await conn.close()

	def _on_notification(self, _conn: Any, _pid: int, channel: str, payload: str) -> None:
		if channel != self.channel or not payload:
			return
		task = asyncio.create_task(self.handle_payload(payload))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def handle_payload(self, raw: str | bytes) -> Optional[IndexOutcome]:
		"""Apply one notification payload. Returns the indexer outcome, if any hook ran."""

		try:
			data = json.loads(raw)
			operation = str(data["operation"]).upper()
			table = data.get("table")
			post_id = int(data["postId"])
		except (ValueError, KeyError, TypeError):
			obs_metrics.CHANGE_EVENTS.labels(operation="unknown", result="invalid").inc()
			_LOG.warning("change_listener.payload_invalid", extra={"payload": str(raw)[:200]})
			return None

		hook = self._hook_for(operation, table)
		if hook is None:
			obs_metrics.CHANGE_EVENTS.labels(operation=operation, result="ignored").inc()
			_LOG.info("change_listener.ignored", extra={"operation": operation, "table": table, "post_id": post_id})
			return None

		try:
			outcome = await hook(post_id)
		except Exception:
			obs_metrics.CHANGE_EVENTS.labels(operation=operation, result="error").inc()
			_LOG.exception("change_listener.hook_failed", extra={"operation": operation, "post_id": post_id})
			return None
		obs_metrics.CHANGE_EVENTS.labels(operation=operation, result="ok" if outcome.ok else "failed").inc()
		return outcome

	def _hook_for(self, operation: str, table: Optional[str]) -> Optional[Callable[[int], Awaitable[IndexOutcome]]]:
		if operation == "COMMENT_UPDATE":
			return self.indexer.on_comment_created
		if operation == "ANALYTICS_UPDATE":
			return self.indexer.on_analytics_updated
		if table != POST_TABLE:
			return None
		return {
			"INSERT": self.indexer.on_post_created,
			"UPDATE": self.indexer.on_post_updated,
			"DELETE": self.indexer.on_post_deleted,
		}.get(operation)


__all__ = ["ChangeListener"]
