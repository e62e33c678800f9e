"""Session-scoped reactive store mirroring server aggregates."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Sequence

from postsearch.client.platform import MemoryPlatform, Platform
from postsearch.client.streams import SignalStream, StateStream, StateSubject
from postsearch.index import events

_LOG = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PostState:
	id: int
	title: str
	status: str = "PUBLISHED"
	category_id: Optional[int] = None
	views: int = 0
	source_clicks: int = 0
	up_votes: int = 0
	down_votes: int = 0


@dataclass(slots=True, frozen=True)
class CategoryState:
	id: int
	name: str


@dataclass(slots=True, frozen=True)
class SearchState:
	query: str = ""
	category_id: Optional[int] = None
	sort_by: str = "relevance"
	is_loading: bool = False
	results: tuple[Any, ...] = ()
	total_count: int = 0
	error: Optional[str] = None


class Freshness(str, enum.Enum):
	FRESH = "fresh"
	STALE = "stale"
	REFETCHING = "refetching"


class InvalidationLevel(str, enum.Enum):
	POST = "post"
	SEARCH = "search"
	ALL = "all"


@dataclass(slots=True, frozen=True)
class InvalidationSignal:
	level: InvalidationLevel
	post_id: Optional[int] = None


PostFetcher = Callable[[int], Awaitable[Optional[PostState]]]

_UNSET: Any = object()


class ReactiveStore:
	"""Observable client state with three invalidation levels.

	Mutations are synchronous. Refetches run as tracked asyncio tasks and are
	cancelled by :meth:`invalidate_all` and :meth:`close`. A connectivity
	change from offline to online resets every collection exactly once.
	"""

	def __init__(
		self,
		*,
		platform: Platform | None = None,
		fetch_post: PostFetcher | None = None,
	) -> None:
		self.platform = platform or MemoryPlatform()
		self._fetch_post = fetch_post
		self._posts: StateSubject[tuple[PostState, ...]] = StateSubject((), name="posts")
		self._categories: StateSubject[tuple[CategoryState, ...]] = StateSubject((), name="categories")
		self._search_state: StateSubject[SearchState] = StateSubject(SearchState(), name="search_state")
		self._selected_post: StateSubject[Optional[PostState]] = StateSubject(None, name="selected_post")
		self._is_online: StateSubject[bool] = StateSubject(self.platform.is_online(), name="is_online")
		self._signals: SignalStream[InvalidationSignal] = SignalStream(name="signals")
		self._freshness: dict[int, Freshness] = {}
		self._refetches: dict[int, asyncio.Task] = {}
		self._closed = False
		self._detach_connectivity = self.platform.on_connectivity_change(self._on_connectivity_change)

	# --- streams --------------------------------------------------------

	@property
	def posts(self) -> StateStream[tuple[PostState, ...]]:
		return self._posts.as_stream()

	@property
	def categories(self) -> StateStream[tuple[CategoryState, ...]]:
		return self._categories.as_stream()

	@property
	def search_state(self) -> StateStream[SearchState]:
		return self._search_state.as_stream()

	@property
	def selected_post(self) -> StateStream[Optional[PostState]]:
		return self._selected_post.as_stream()

	@property
	def is_online(self) -> StateStream[bool]:
		return self._is_online.as_stream()

	@property
	def signals(self) -> SignalStream[InvalidationSignal]:
		return self._signals

	def freshness(self, post_id: int) -> Freshness:
		return self._freshness.get(post_id, Freshness.FRESH)

	def get_post(self, post_id: int) -> Optional[PostState]:
		for post in self._posts.value:
			if post.id == post_id:
				return post
		return None

	# --- mutations ------------------------------------------------------

	def update_posts(self, posts: Sequence[PostState]) -> None:
		self._posts.next(tuple(posts))

	def add_post(self, post: PostState) -> None:
		self._posts.next((post, *self._posts.value))

	def update_post(self, post: PostState) -> bool:
		"""Replace the post with the same id; unknown ids are ignored."""
		if not self._replace_post(post):
			return False
		self._mark(post.id, Freshness.STALE)
		return True

	def remove_post(self, post_id: int) -> None:
		self._cancel_refetch(post_id)
		self._drop_post(post_id)

	def update_categories(self, categories: Sequence[CategoryState]) -> None:
		self._categories.next(tuple(categories))

	def update_search_state(
		self,
		*,
		query: str = _UNSET,
		category_id: Optional[int] = _UNSET,
		sort_by: str = _UNSET,
		is_loading: bool = _UNSET,
		results: Sequence[Any] = _UNSET,
		total_count: int = _UNSET,
		error: Optional[str] = _UNSET,
	) -> None:
		changes: dict[str, Any] = {
			name: value
			for name, value in (
				("query", query),
				("category_id", category_id),
				("sort_by", sort_by),
				("is_loading", is_loading),
				("total_count", total_count),
				("error", error),
			)
			if value is not _UNSET
		}
		if results is not _UNSET:
			changes["results"] = tuple(results)
		self._search_state.next(replace(self._search_state.value, **changes))

	def set_selected_post(self, post: Optional[PostState]) -> None:
		self._selected_post.next(post)

	def track_post_view(self, post_id: int) -> bool:
		"""Optimistically count one view in local state."""
		return self._bump(post_id, views=1)

	def revert_post_view(self, post_id: int) -> bool:
		return self._bump(post_id, views=-1)

	def track_source_click(self, post_id: int) -> bool:
		return self._bump(post_id, source_clicks=1)

	def update_post_votes(self, post_id: int, up_votes: int, down_votes: int) -> bool:
		post = self.get_post(post_id)
		if post is None:
			return False
		return self.update_post(replace(post, up_votes=up_votes, down_votes=down_votes))

	# --- invalidation ---------------------------------------------------

	def invalidate_post(self, post_id: int) -> None:
		"""Mark ``post_id`` stale and schedule a refetch when a fetcher is configured."""
		self._mark(post_id, Freshness.STALE)
		self._signals.emit(InvalidationSignal(InvalidationLevel.POST, post_id))
		self._schedule_refetch(post_id)

	def invalidate_search(self) -> None:
		self._reset_search()
		self._signals.emit(InvalidationSignal(InvalidationLevel.SEARCH))

	def invalidate_all(self) -> None:
		for post_id in list(self._refetches):
			self._cancel_refetch(post_id)
		self._freshness.clear()
		self._posts.next(())
		self._categories.next(())
		self._reset_search()
		self._selected_post.next(None)
		self._signals.emit(InvalidationSignal(InvalidationLevel.ALL))
		_LOG.info("reactive_store.invalidated_all")

	def refresh_stale(self) -> list[asyncio.Task]:
		"""Schedule refetches for every stale post; returns the scheduled tasks."""
		tasks: list[asyncio.Task] = []
		for post_id, state in list(self._freshness.items()):
			if state is Freshness.STALE:
				task = self._schedule_refetch(post_id)
				if task is not None:
					tasks.append(task)
		return tasks

	def handle_index_event(self, event: events.IndexEvent) -> None:
		"""Apply a server-side index change to local state."""
		if event.kind == events.POST_INDEXED and event.post_id is not None:
			if self.get_post(event.post_id) is not None:
				self.invalidate_post(event.post_id)
			self.invalidate_search()
		elif event.kind == events.POST_REMOVED and event.post_id is not None:
			self.remove_post(event.post_id)
			self.invalidate_search()
		elif event.kind in (events.INDEX_REBUILT, events.INDEX_CLEARED):
			self.invalidate_all()

	async def wait_refetches(self) -> None:
		while self._refetches:
			await asyncio.gather(*list(self._refetches.values()), return_exceptions=True)

	async def close(self) -> None:
		"""End the session: stop listening for connectivity and cancel refetches."""
		if self._closed:
			return
		self._closed = True
		self._detach_connectivity()
		tasks = list(self._refetches.values())
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._refetches.clear()
		for subject in (self._posts, self._categories, self._search_state, self._selected_post, self._is_online):
			subject.complete()
		self._signals.complete()

	# --- internals ------------------------------------------------------

	def _on_connectivity_change(self, online: bool) -> None:
		was_online = self._is_online.value
		self._is_online.next(online)
		if online and not was_online:
			_LOG.info("reactive_store.back_online")
			self.invalidate_all()

	def _reset_search(self) -> None:
		self.update_search_state(results=(), total_count=0, is_loading=True, error=None)

	def _drop_post(self, post_id: int) -> None:
		self._posts.next(tuple(post for post in self._posts.value if post.id != post_id))
		self._freshness.pop(post_id, None)
		selected = self._selected_post.value
		if selected is not None and selected.id == post_id:
			self._selected_post.next(None)

	def _replace_post(self, post: PostState) -> bool:
		current = self._posts.value
		for index, existing in enumerate(current):
			if existing.id == post.id:
				self._posts.next(current[:index] + (post,) + current[index + 1:])
				selected = self._selected_post.value
				if selected is not None and selected.id == post.id:
					self._selected_post.next(post)
				return True
		return False

	def _bump(self, post_id: int, *, views: int = 0, source_clicks: int = 0) -> bool:
		post = self.get_post(post_id)
		if post is None:
			return False
		return self.update_post(
			replace(
				post,
				views=max(0, post.views + views),
				source_clicks=max(0, post.source_clicks + source_clicks),
			)
		)

	def _mark(self, post_id: int, state: Freshness) -> None:
		self._freshness[post_id] = state

	def _schedule_refetch(self, post_id: int) -> Optional[asyncio.Task]:
		if self._fetch_post is None or self._closed:
			return None
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			_LOG.debug("reactive_store.refetch_deferred", extra={"post_id": post_id})
			return None
		self._cancel_refetch(post_id)
		task = loop.create_task(self._refetch(post_id))
		self._refetches[post_id] = task
		task.add_done_callback(lambda done: self._forget_refetch(post_id, done))
		return task

	def _forget_refetch(self, post_id: int, task: asyncio.Task) -> None:
		if self._refetches.get(post_id) is task:
			del self._refetches[post_id]

	def _cancel_refetch(self, post_id: int) -> None:
		task = self._refetches.pop(post_id, None)
		if task is not None and not task.done():
			task.cancel()

	async def _refetch(self, post_id: int) -> None:
		assert self._fetch_post is not None
		self._mark(post_id, Freshness.REFETCHING)
		try:
			post = await self._fetch_post(post_id)
		except asyncio.CancelledError:
			if self._freshness.get(post_id) is Freshness.REFETCHING:
				self._mark(post_id, Freshness.STALE)
			raise
		except Exception:
			self._mark(post_id, Freshness.STALE)
			_LOG.warning("reactive_store.refetch_failed", extra={"post_id": post_id}, exc_info=True)
			return
		if post is None:
			self._drop_post(post_id)
			return
		if not self._replace_post(post):
			self.add_post(post)
		self._mark(post_id, Freshness.FRESH)


__all__ = [
	"ReactiveStore",
	"PostState",
	"CategoryState",
	"SearchState",
	"Freshness",
	"InvalidationLevel",
	"InvalidationSignal",
	"PostFetcher",
]
