"""Write path for the search index."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Sequence

from redis.exceptions import RedisError

from postsearch.index import codec, events, keys
from postsearch.index.cache import CacheLayer
from postsearch.index.codec import IndexedDocument
from postsearch.index.exceptions import IndexWriteError
from postsearch.index.ranking import RankingStore
from postsearch.obs import metrics as obs_metrics
from postsearch.primary.models import PostRecord
from postsearch.primary.repository import PostgresPrimaryStore, PrimaryStore
from postsearch.settings import settings

_LOG = logging.getLogger(__name__)

WriteStep = Callable[[], Awaitable[object]]


@dataclass(slots=True)
class IndexOutcome:
	"""Result of one indexer operation as reported to the caller."""

	op: str
	ok: bool
	attempts: int = 1
	documents: int = 0
	error: Optional[str] = None

	@property
	def retried(self) -> bool:
		return self.attempts > 1


@dataclass(slots=True)
class IndexStats:
	"""Diagnostic snapshot of the index structures."""

	membership: int
	rankings: dict[str, int]
	documents: int
	cached: dict[str, int]
	repair_ids: list[int] = field(default_factory=list)
	ranked_without_document: list[int] = field(default_factory=list)
	documents_without_ranking: list[int] = field(default_factory=list)

	@property
	def consistent(self) -> bool:
		return not self.ranked_without_document and not self.documents_without_ranking


class SearchIndexer:
	"""Maintains documents, rankings, and caches as posts change.

	Every key-value step is retried once without backoff; a step that fails
	twice turns the whole operation into a failed :class:`IndexOutcome`.
	"""

	def __init__(
		self,
		*,
		ranking: RankingStore | None = None,
		cache: CacheLayer | None = None,
		publisher: events.IndexEventPublisher | None = None,
		primary: PrimaryStore | None = None,
		batch_size: int | None = None,
	) -> None:
		self.ranking = ranking or RankingStore()
		self.cache = cache or CacheLayer(self.ranking.redis)
		self.publisher = publisher or events.IndexEventPublisher(self.ranking.redis)
		self.primary = primary or PostgresPrimaryStore()
		self.batch_size = batch_size or settings.reindex_batch_size

	# --- public operations ----------------------------------------------

	async def index_post(self, document: IndexedDocument) -> IndexOutcome:
		async def _upsert() -> object:
			pipe = self.ranking.pipeline(transaction=True)
			self.ranking.stage_upsert(pipe, document)
			return await pipe.execute()

		return await self._run(
			"index_post",
			[("upsert", _upsert), ("invalidate_cache", self.cache.invalidate_all)],
			event=events.IndexEvent(events.POST_INDEXED, document.id),
			documents=1,
		)

	async def index_record(self, record: PostRecord) -> IndexOutcome:
		if not record.searchable:
			return await self.remove_post(record.id)
		return await self.index_post(codec.from_record(record, max_chars=settings.excerpt_max_chars))

	async def remove_post(self, post_id: int) -> IndexOutcome:
		async def _remove() -> object:
			pipe = self.ranking.pipeline(transaction=True)
			self.ranking.stage_remove(pipe, post_id)
			return await pipe.execute()

		return await self._run(
			"remove_post",
			[("remove", _remove), ("invalidate_cache", self.cache.invalidate_all)],
			event=events.IndexEvent(events.POST_REMOVED, post_id),
		)

	async def reindex_all(self) -> IndexOutcome:
		"""Drop every index structure, then replay published posts from the primary store."""

		started = time.perf_counter()
		attempts = 1
		indexed = 0
		try:
			attempts = max(attempts, await self._write("reindex_all", "clear", self._clear_structures))
			after_id: Optional[int] = None
			while True:
				records = await self.primary.list_published_posts(after_id=after_id, limit=self.batch_size)
				if not records:
					break
				documents = [
					codec.from_record(record, max_chars=settings.excerpt_max_chars)
					for record in records
					if record.searchable
				]
				if documents:
					attempts = max(attempts, await self._write("reindex_all", "upsert_batch", self._upsert_batch(documents)))
					indexed += len(documents)
				after_id = records[-1].id
				if len(records) < self.batch_size:
					break
			attempts = max(attempts, await self._write("reindex_all", "invalidate_cache", self.cache.invalidate_all))
		except IndexWriteError as exc:
			return self._failed("reindex_all", exc, documents=indexed)

		duration = time.perf_counter() - started
		obs_metrics.REINDEX_DURATION.observe(duration)
		obs_metrics.REINDEX_DOCUMENTS.inc(indexed)
		_LOG.info("search_indexer.reindexed", extra={"documents": indexed, "duration": round(duration, 3)})
		return await self._succeeded(
			"reindex_all",
			attempts,
			event=events.IndexEvent(events.INDEX_REBUILT),
			documents=indexed,
		)

	async def clear_all_indexes(self) -> IndexOutcome:
		return await self._run(
			"clear_all_indexes",
			[("clear", self._clear_structures), ("purge_cache", self.cache.purge)],
			event=events.IndexEvent(events.INDEX_CLEARED),
		)

	# --- change hooks ---------------------------------------------------

	async def on_post_created(self, post_id: int) -> IndexOutcome:
		return await self.on_post_updated(post_id)

	async def on_post_updated(self, post_id: int) -> IndexOutcome:
		record = await self.primary.get_post(post_id)
		if record is None:
			return await self.remove_post(post_id)
		return await self.index_record(record)

	async def on_post_deleted(self, post_id: int) -> IndexOutcome:
		return await self.remove_post(post_id)

	async def on_comment_created(self, post_id: int) -> IndexOutcome:
		return await self.on_post_updated(post_id)

	async def on_analytics_updated(self, post_id: int) -> IndexOutcome:
		return await self.on_post_updated(post_id)

	# --- diagnostics ----------------------------------------------------

	async def stats(self) -> IndexStats:
		"""Walk every structure and report disagreements. Uses key scans; not for hot paths."""

		redis = self.ranking.redis
		document_ids = {
			post_id
			for post_id in (keys.post_id_from_key(key) for key in await redis.scan_keys(keys.DOCUMENT_PREFIX))
			if post_id is not None
		}
		ranked = await self.ranking.known_ids()
		return IndexStats(
			membership=len(await self.ranking.membership()),
			rankings={ranking: await self.ranking.cardinality(ranking) for ranking in keys.RANKINGS},
			documents=len(document_ids),
			cached={kind: await self.cache.registered_keys(kind) for kind in keys.CACHE_KINDS},
			repair_ids=sorted(await self.ranking.repair_ids()),
			ranked_without_document=sorted(ranked - document_ids),
			documents_without_ranking=sorted(document_ids - ranked),
		)

	# --- internals ------------------------------------------------------

	async def _clear_structures(self) -> object:
		# Interrupted writes can leave documents outside every ranking; sweep by prefix too.
		document_keys = {keys.document_key(post_id) for post_id in await self.ranking.known_ids()}
		document_keys.update(await self.ranking.redis.scan_keys(keys.DOCUMENT_PREFIX))
		pipe = self.ranking.pipeline(transaction=True)
		self.ranking.stage_clear(pipe, sorted(document_keys))
		return await pipe.execute()

	def _upsert_batch(self, documents: Sequence[IndexedDocument]) -> WriteStep:
		async def _step() -> object:
			pipe = self.ranking.pipeline(transaction=True)
			for document in documents:
				self.ranking.stage_upsert(pipe, document)
			return await pipe.execute()

		return _step

	async def _write(self, op: str, step: str, action: WriteStep) -> int:
		"""Run one write step, retrying once. Returns the attempts used."""

		try:
			await action()
			return 1
		except RedisError as exc:
			obs_metrics.INDEX_WRITE_RETRIES.labels(op=op).inc()
			_LOG.warning("search_indexer.retrying", extra={"op": op, "step": step, "error": str(exc)})
		try:
			await action()
			return 2
		except RedisError as exc:
			raise IndexWriteError(step, attempts=2) from exc

	async def _run(
		self,
		op: str,
		steps: Sequence[tuple[str, WriteStep]],
		*,
		event: events.IndexEvent,
		documents: int = 0,
	) -> IndexOutcome:
		attempts = 1
		try:
			for step, action in steps:
				attempts = max(attempts, await self._write(op, step, action))
		except IndexWriteError as exc:
			return self._failed(op, exc, post_id=event.post_id)
		return await self._succeeded(op, attempts, event=event, documents=documents)

	async def _succeeded(self, op: str, attempts: int, *, event: events.IndexEvent, documents: int = 0) -> IndexOutcome:
		obs_metrics.record_index_write(op, ok=True)
		await self.publisher.publish(event)
		return IndexOutcome(op=op, ok=True, attempts=attempts, documents=documents)

	def _failed(
		self,
		op: str,
		exc: IndexWriteError,
		*,
		post_id: Optional[int] = None,
		documents: int = 0,
	) -> IndexOutcome:
		obs_metrics.record_index_write(op, ok=False)
		_LOG.error(
			"search_indexer.write_failed",
			extra={"op": op, "step": exc.step, "attempts": exc.attempts, "post_id": post_id},
			exc_info=exc,
		)
		return IndexOutcome(op=op, ok=False, attempts=exc.attempts, documents=documents, error=exc.detail)


__all__ = ["SearchIndexer", "IndexOutcome", "IndexStats"]
