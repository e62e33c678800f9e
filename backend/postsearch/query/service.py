"""Read path: ranked search, feeds, suggestions, and popular searches."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, Sequence

from redis.exceptions import RedisError

from postsearch.index import codec, keys
from postsearch.index.cache import CacheLayer
from postsearch.index.codec import IndexedDocument
from postsearch.index.exceptions import SearchUnavailableError
from postsearch.index.indexer import SearchIndexer
from postsearch.index.ranking import SORT_RANKINGS, RankingStore
from postsearch.obs import metrics as obs_metrics
from postsearch.primary.repository import PostgresPrimaryStore, PrimaryStore
from postsearch.query import guards, scoring
from postsearch.query.schemas import SearchHit, SearchPage
from postsearch.settings import settings

_LOG = logging.getLogger(__name__)

_SEARCH_KIND = "search"
_FEED_KIND = "feed"
_SUGGESTION_PAGE = 100


class QueryService:
	"""Serve queries from the index, memoizing pages in the cache layer."""

	def __init__(
		self,
		*,
		ranking: RankingStore | None = None,
		cache: CacheLayer | None = None,
		primary: PrimaryStore | None = None,
		indexer: SearchIndexer | None = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.ranking = ranking or RankingStore()
		self.cache = cache or CacheLayer(self.ranking.redis)
		self.primary = primary or PostgresPrimaryStore()
		self.indexer = indexer or SearchIndexer(ranking=self.ranking, cache=self.cache, primary=self.primary)
		self._clock = clock
		self._popular: Optional[list[str]] = None
		self._popular_at = 0.0

	async def search(
		self,
		query: str = "",
		*,
		category_id: Optional[int] = None,
		sort_by: str = "relevance",
		limit: int = 20,
		offset: int = 0,
	) -> SearchPage:
		normalized = guards.normalize_query(query)
		guards.ensure_search_allowed(normalized, sort_by=sort_by, limit=limit, offset=offset)
		params = {
			"q": normalized.lower(),
			"category_id": category_id,
			"sort_by": sort_by,
			"limit": limit,
			"offset": offset,
		}

		obs_metrics.inc_search_query(sort_by)
		started = time.perf_counter()
		try:
			payload = await self.cache.get_or_build(
				_SEARCH_KIND,
				params,
				ttl=settings.search_cache_ttl_seconds,
				builder=lambda: self._compute_search(
					normalized,
					category_id=category_id,
					sort_by=sort_by,
					limit=limit,
					offset=offset,
				),
			)
		except RedisError as exc:
			_LOG.warning("query_service.search_unavailable", extra={"sort_by": sort_by, "error": str(exc)})
			raise SearchUnavailableError() from exc
		obs_metrics.observe_search_latency(sort_by, time.perf_counter() - started)
		if normalized:
			await self._record_query(normalized)
		page = SearchPage.model_validate(payload)
		if page.query != normalized:
			page = page.model_copy(update={"query": normalized})
		return page

	async def feed(self, *, category_id: Optional[int] = None, limit: int = 10, offset: int = 0) -> SearchPage:
		guards.ensure_page_allowed(limit=limit, offset=offset)
		params = {"category_id": category_id, "limit": limit, "offset": offset}
		obs_metrics.inc_search_query(_FEED_KIND)
		try:
			payload = await self.cache.get_or_build(
				_FEED_KIND,
				params,
				ttl=settings.feed_cache_ttl_seconds,
				builder=lambda: self._compute_search(
					"",
					category_id=category_id,
					sort_by="date",
					limit=limit,
					offset=offset,
				),
			)
		except RedisError as exc:
			_LOG.warning("query_service.feed_unavailable", extra={"error": str(exc)})
			raise SearchUnavailableError() from exc
		return SearchPage.model_validate(payload)

	async def suggestions(self, partial_query: str, *, limit: int = 5) -> list[str]:
		"""Titles of documents containing ``partial_query``, most viewed first."""

		fragment = guards.normalize_query(partial_query)
		guards.ensure_suggestions_allowed(fragment, limit=limit)
		if not fragment:
			return []

		obs_metrics.inc_search_query("suggestions")
		titles: list[str] = []
		seen: set[str] = set()
		start = 0
		try:
			while len(titles) < limit:
				ids = await self.ranking.ids_desc(keys.BY_VIEWS, start=start, stop=start + _SUGGESTION_PAGE - 1)
				if not ids:
					break
				documents = await self._load_documents(ids)
				for post_id in ids:
					document = documents.get(post_id)
					if document is None or not scoring.matches_fragment(fragment, document):
						continue
					folded = document.title.lower()
					if folded in seen:
						continue
					seen.add(folded)
					titles.append(document.title)
					if len(titles) >= limit:
						break
				start += _SUGGESTION_PAGE
		except RedisError as exc:
			_LOG.warning("query_service.suggestions_unavailable", extra={"error": str(exc)})
			raise SearchUnavailableError() from exc
		return titles

	async def popular_searches(self) -> list[str]:
		"""Most frequent recorded queries, or the configured trending terms. Never raises."""

		now = self._clock()
		if self._popular is not None and now - self._popular_at < settings.popular_searches_refresh_seconds:
			return list(self._popular)
		size = settings.popular_searches_size
		try:
			rows = await self.ranking.redis.zrevrange(keys.POPULAR_QUERIES, 0, size - 1)
		except RedisError:
			_LOG.warning("query_service.popular_unavailable", exc_info=True)
			return []
		terms = [row.decode() if isinstance(row, bytes) else str(row) for row in rows]
		if not terms:
			terms = list(settings.popular_search_defaults)[:size]
		self._popular = terms
		self._popular_at = now
		return list(terms)

	async def get_document(self, post_id: int) -> Optional[IndexedDocument]:
		"""Indexed document for ``post_id``, falling back to the primary store and re-indexing."""

		try:
			document = await self.ranking.get_document(post_id)
		except RedisError as exc:
			raise SearchUnavailableError() from exc
		if document is not None:
			return document

		record = await self.primary.get_post(post_id)
		if record is None or not record.searchable:
			return None
		_LOG.info("query_service.document_fallback", extra={"post_id": post_id})
		outcome = await self.indexer.index_record(record)
		if not outcome.ok:
			_LOG.warning("query_service.fallback_reindex_failed", extra={"post_id": post_id, "error": outcome.error})
		return codec.from_record(record, max_chars=settings.excerpt_max_chars)

	async def _compute_search(
		self,
		query: str,
		*,
		category_id: Optional[int],
		sort_by: str,
		limit: int,
		offset: int,
	) -> dict[str, Any]:
		terms = scoring.tokenize(query)
		page: list[tuple[IndexedDocument, float]] = []
		total = 0
		ranking = SORT_RANKINGS.get(sort_by, keys.BY_DATE)
		if sort_by == "relevance" and not terms:
			# nothing to score against
			pass
		elif not terms and category_id is None:
			page, total = await self._ranked_slice(ranking, sort_by, limit=limit, offset=offset)
		else:
			ids = await self.ranking.ids_desc(ranking)
			documents = await self._load_documents(ids)
			matched = []
			for post_id in ids:
				document = documents.get(post_id)
				if document is None:
					continue
				if category_id is not None and document.category_id != category_id:
					continue
				if terms:
					relevance = scoring.term_overlap(terms, document)
					if relevance <= 0:
						continue
				else:
					relevance = 0.0
				score = relevance if sort_by == "relevance" else _ranking_score(document, sort_by)
				matched.append((document, score))
			if sort_by == "relevance":
				matched.sort(key=lambda item: (item[1], item[0].created_ts), reverse=True)
			page = matched[offset:offset + limit]
			total = len(matched)

		result = SearchPage(
			items=[SearchHit.from_document(document, score=score) for document, score in page],
			total=total,
			query=query,
			sort_by=sort_by,  # type: ignore[arg-type]
			category_id=category_id,
			limit=limit,
			offset=offset,
		)
		return result.model_dump(mode="json")

	async def _ranked_slice(
		self, ranking: str, sort_by: str, *, limit: int, offset: int
	) -> tuple[list[tuple[IndexedDocument, float]], int]:
		"""One page straight off a ranking, for unfiltered ranked queries."""

		ids = await self.ranking.ids_desc(ranking, start=offset, stop=offset + limit - 1)
		total = await self.ranking.cardinality(ranking)
		documents = await self._load_documents(ids)
		page = [
			(documents[post_id], _ranking_score(documents[post_id], sort_by))
			for post_id in ids
			if post_id in documents
		]
		return page, total

	async def _load_documents(self, ids: Sequence[int]) -> dict[int, IndexedDocument]:
		documents, missing = await self.ranking.load_documents(ids)
		if missing:
			await self._report_inconsistency(missing)
		return documents

	async def _report_inconsistency(self, missing: Sequence[int]) -> None:
		obs_metrics.CONSISTENCY_VIOLATIONS.inc(len(missing))
		_LOG.warning("query_service.ranked_without_document", extra={"post_ids": list(missing)})
		try:
			await self.ranking.flag_for_repair(missing)
		except RedisError:
			_LOG.warning("query_service.repair_flag_failed", extra={"post_ids": list(missing)})

	async def _record_query(self, query: str) -> None:
		try:
			await self.ranking.redis.zincrby(keys.POPULAR_QUERIES, 1, query.lower())
		except RedisError:
			_LOG.warning("query_service.popular_record_failed", exc_info=True)


def _ranking_score(document: IndexedDocument, sort_by: str) -> float:
	if sort_by == "views":
		return float(document.views)
	if sort_by == "votes":
		return float(document.net_votes)
	return document.created_ts


__all__ = ["QueryService"]
