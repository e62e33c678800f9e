"""Turns raw query edits into debounced, cancellable searches."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Protocol

from postsearch.client.store import ReactiveStore
from postsearch.client.streams import StateStream, StateSubject
from postsearch.query.schemas import SearchHit, SearchPage

_LOG = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 0.3
MIN_QUERY_LENGTH = 2
SUGGESTION_MAX_LENGTH = 15
SEARCH_LIMIT = 50
SUGGESTION_LIMIT = 5


class QueryClient(Protocol):
	async def search(
		self,
		query: str = "",
		*,
		category_id: Optional[int] = None,
		sort_by: str = "relevance",
		limit: int = 20,
		offset: int = 0,
	) -> SearchPage:
		...

	async def suggestions(self, partial_query: str, *, limit: int = 5) -> list[str]:
		...

	async def popular_searches(self) -> list[str]:
		...


@dataclass(slots=True, frozen=True)
class QueryState:
	query: str = ""
	category_id: Optional[int] = None
	sort_by: str = "relevance"


@dataclass(slots=True, frozen=True)
class SearchResults:
	"""Outcome of the latest committed query.

	``error`` is set when the query failed; an empty ``items`` with no error
	means the query ran and matched nothing.
	"""

	items: tuple[SearchHit, ...] = ()
	total: int = 0
	is_loading: bool = False
	error: Optional[str] = None
	state: QueryState = field(default_factory=QueryState)


class DebouncedQueryOrchestrator:
	def __init__(
		self,
		client: QueryClient,
		*,
		store: ReactiveStore | None = None,
		debounce: float = DEBOUNCE_SECONDS,
		min_query_length: int = MIN_QUERY_LENGTH,
		suggestion_max_length: int = SUGGESTION_MAX_LENGTH,
		search_limit: int = SEARCH_LIMIT,
		suggestion_limit: int = SUGGESTION_LIMIT,
	) -> None:
		self.client = client
		self.store = store
		self.debounce = debounce
		self.min_query_length = min_query_length
		self.suggestion_max_length = suggestion_max_length
		self.search_limit = search_limit
		self.suggestion_limit = suggestion_limit
		self._raw: StateSubject[QueryState] = StateSubject(QueryState(), name="raw_query")
		self._committed: StateSubject[QueryState] = StateSubject(QueryState(), name="committed_query")
		self._results: StateSubject[SearchResults] = StateSubject(SearchResults(), name="results")
		self._suggestions: StateSubject[tuple[str, ...]] = StateSubject((), name="suggestions")
		self._popular: StateSubject[tuple[str, ...]] = StateSubject((), name="popular")
		self._generation = 0
		self._timer: Optional[asyncio.Task] = None
		self._inflight: set[asyncio.Task] = set()
		self._closed = False

	@property
	def raw_state(self) -> StateStream[QueryState]:
		return self._raw.as_stream()

	@property
	def committed_state(self) -> StateStream[QueryState]:
		return self._committed.as_stream()

	@property
	def results(self) -> StateStream[SearchResults]:
		return self._results.as_stream()

	@property
	def suggestions(self) -> StateStream[tuple[str, ...]]:
		return self._suggestions.as_stream()

	@property
	def popular(self) -> StateStream[tuple[str, ...]]:
		return self._popular.as_stream()

	@property
	def generation(self) -> int:
		return self._generation

	# --- raw edits ------------------------------------------------------

	def set_query(self, query: str) -> None:
		self._update(query=query)

	def set_category(self, category_id: Optional[int]) -> None:
		self._update(category_id=category_id)

	def set_sort(self, sort_by: str) -> None:
		self._update(sort_by=sort_by)

	def clear(self) -> None:
		self._update(query="")

	def _update(self, **changes: Any) -> None:
		if self._closed:
			return
		state = replace(self._raw.value, **changes)
		if not self._raw.next(state):
			return
		self._cancel_timer()
		if not state.query.strip():
			self._commit(state)
			return
		self._timer = asyncio.get_running_loop().create_task(self._debounced_commit(state))

	async def _debounced_commit(self, state: QueryState) -> None:
		await asyncio.sleep(self.debounce)
		self._timer = None
		self._commit(state)

	def _cancel_timer(self) -> None:
		if self._timer is not None and not self._timer.done():
			self._timer.cancel()
		self._timer = None

	# --- committed queries ----------------------------------------------

	def _commit(self, state: QueryState) -> None:
		if not self._committed.next(state):
			return
		self._generation += 1
		for task in list(self._inflight):
			task.cancel()
		self._execute(state, self._generation)

	def refresh(self) -> None:
		"""Re-run the committed query, superseding anything in flight."""
		self._generation += 1
		for task in list(self._inflight):
			task.cancel()
		self._execute(self._committed.value, self._generation)

	def _execute(self, state: QueryState, generation: int) -> None:
		query = state.query.strip()
		if len(query) < self.min_query_length:
			self._results.next(SearchResults(state=state))
			self._suggestions.next(())
			if self.store is not None:
				self.store.update_search_state(
					query=state.query,
					category_id=state.category_id,
					sort_by=state.sort_by,
					is_loading=False,
					results=(),
					total_count=0,
					error=None,
				)
			return

		self._results.next(SearchResults(is_loading=True, state=state))
		if self.store is not None:
			self.store.update_search_state(
				query=state.query,
				category_id=state.category_id,
				sort_by=state.sort_by,
				is_loading=True,
				results=(),
				total_count=0,
				error=None,
			)
		self._spawn(self._run_search(state, generation))
		if len(query) < self.suggestion_max_length:
			self._spawn(self._run_suggestions(query, generation))
		else:
			self._suggestions.next(())

	def _spawn(self, coro: Any) -> asyncio.Task:
		task = asyncio.get_running_loop().create_task(coro)
		self._inflight.add(task)
		task.add_done_callback(self._inflight.discard)
		return task

	async def _run_search(self, state: QueryState, generation: int) -> None:
		try:
			page = await self.client.search(
				state.query.strip(),
				category_id=state.category_id,
				sort_by=state.sort_by,
				limit=self.search_limit,
			)
		except asyncio.CancelledError:
			raise
		except Exception as exc:
			if generation != self._generation:
				return
			_LOG.warning("query_orchestrator.search_failed", extra={"query": state.query, "error": str(exc)})
			error = str(exc) or type(exc).__name__
			self._results.next(SearchResults(error=error, state=state))
			if self.store is not None:
				self.store.update_search_state(is_loading=False, results=(), total_count=0, error=error)
			return
		if generation != self._generation:
			_LOG.debug("query_orchestrator.superseded", extra={"query": state.query})
			return
		self._results.next(SearchResults(items=tuple(page.items), total=page.total, state=state))
		if self.store is not None:
			self.store.update_search_state(is_loading=False, results=page.items, total_count=page.total, error=None)

	async def _run_suggestions(self, query: str, generation: int) -> None:
		try:
			titles = await self.client.suggestions(query, limit=self.suggestion_limit)
		except asyncio.CancelledError:
			raise
		except Exception:
			_LOG.warning("query_orchestrator.suggestions_failed", extra={"query": query}, exc_info=True)
			titles = []
		if generation == self._generation:
			self._suggestions.next(tuple(titles))

	async def load_popular(self) -> tuple[str, ...]:
		try:
			terms = await self.client.popular_searches()
		except Exception:
			_LOG.warning("query_orchestrator.popular_failed", exc_info=True)
			terms = []
		self._popular.next(tuple(terms))
		return self._popular.value

	# --- lifecycle ------------------------------------------------------

	async def wait_idle(self) -> None:
		"""Wait until no debounce timer or query task is pending."""
		while True:
			pending = [task for task in (self._timer, *self._inflight) if task is not None and not task.done()]
			if not pending:
				return
			await asyncio.gather(*pending, return_exceptions=True)

	async def close(self) -> None:
		self._closed = True
		tasks = [task for task in (self._timer, *self._inflight) if task is not None]
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._timer = None
		self._inflight.clear()


__all__ = [
	"DebouncedQueryOrchestrator",
	"QueryClient",
	"QueryState",
	"SearchResults",
	"DEBOUNCE_SECONDS",
	"MIN_QUERY_LENGTH",
	"SUGGESTION_MAX_LENGTH",
]
