import asyncio

import pytest

from postsearch.client.platform import MemoryPlatform
from postsearch.client.relay import IndexEventRelay
from postsearch.client.store import (
	CategoryState,
	Freshness,
	InvalidationLevel,
	PostState,
	ReactiveStore,
)
from postsearch.client.view_tracker import ViewTracker, session_marker
from postsearch.index.events import IndexEvent


def _posts():
	return [PostState(id=1, title="One", views=3), PostState(id=2, title="Two", up_votes=4)]


def test_streams_replay_latest_and_skip_duplicates():
	store = ReactiveStore()
	store.update_posts(_posts())
	received = []
	store.posts.subscribe(received.append)

	store.update_posts(_posts())
	store.add_post(PostState(id=3, title="Three"))

	assert [len(posts) for posts in received] == [2, 3]
	assert store.posts.value[0].id == 3


def test_mutations_update_posts_and_selection():
	store = ReactiveStore()
	store.update_posts(_posts())
	store.set_selected_post(store.get_post(2))

	assert store.update_post_votes(2, 10, 1)
	assert store.selected_post.value.up_votes == 10
	assert store.track_source_click(1)
	assert store.get_post(1).source_clicks == 1
	assert not store.update_post(PostState(id=99, title="missing"))

	store.remove_post(2)
	assert [post.id for post in store.posts.value] == [1]
	assert store.selected_post.value is None


def test_search_state_partial_updates():
	store = ReactiveStore()
	store.update_search_state(query="rain", sort_by="date")
	store.update_search_state(results=["a", "b"], total_count=2)
	state = store.search_state.value
	assert (state.query, state.sort_by, state.results, state.total_count) == ("rain", "date", ("a", "b"), 2)

	store.invalidate_search()
	state = store.search_state.value
	assert state.results == () and state.total_count == 0 and state.is_loading
	assert state.query == "rain"


def test_invalidate_all_clears_collections():
	store = ReactiveStore()
	store.update_posts(_posts())
	store.update_categories([CategoryState(id=1, name="World")])
	store.set_selected_post(store.get_post(1))
	signals = []
	store.signals.subscribe(signals.append)

	store.invalidate_all()

	assert store.posts.value == ()
	assert store.categories.value == ()
	assert store.selected_post.value is None
	assert store.search_state.value.is_loading
	assert [signal.level for signal in signals] == [InvalidationLevel.ALL]


def test_offline_to_online_invalidates_once():
	platform = MemoryPlatform(online=True)
	store = ReactiveStore(platform=platform)
	store.update_posts(_posts())
	resets = []
	store.signals.subscribe(lambda signal: resets.append(signal) if signal.level is InvalidationLevel.ALL else None)

	platform.set_online(False)
	assert store.is_online.value is False
	assert store.posts.value != ()

	platform.set_online(True)
	platform.set_online(True)

	assert len(resets) == 1
	assert store.posts.value == ()
	assert store.is_online.value is True

	platform.set_online(False)
	platform.set_online(True)
	assert len(resets) == 2


def test_online_without_prior_offline_does_not_invalidate():
	platform = MemoryPlatform(online=True)
	store = ReactiveStore(platform=platform)
	store.update_posts(_posts())
	platform.set_online(True)
	assert len(store.posts.value) == 2


@pytest.mark.asyncio
async def test_invalidate_post_refetches_to_fresh():
	async def _fetch(post_id):
		await asyncio.sleep(0)
		return PostState(id=post_id, title="Refetched", views=100)

	store = ReactiveStore(fetch_post=_fetch)
	store.update_posts(_posts())

	store.invalidate_post(1)
	assert store.freshness(1) is Freshness.STALE

	await store.wait_refetches()

	assert store.freshness(1) is Freshness.FRESH
	assert store.get_post(1).views == 100
	await store.close()


@pytest.mark.asyncio
async def test_refetch_failure_leaves_post_stale_for_retry():
	attempts = []
	gate = asyncio.Event()

	async def _fetch(post_id):
		attempts.append(post_id)
		if len(attempts) == 1:
			raise RuntimeError("network")
		await gate.wait()
		return PostState(id=post_id, title="Back", views=9)

	store = ReactiveStore(fetch_post=_fetch)
	store.update_posts(_posts())
	store.invalidate_post(1)
	await store.wait_refetches()
	assert store.freshness(1) is Freshness.STALE

	tasks = store.refresh_stale()
	await asyncio.sleep(0)
	assert len(tasks) == 1
	assert store.freshness(1) is Freshness.REFETCHING
	gate.set()
	await store.wait_refetches()
	assert store.freshness(1) is Freshness.FRESH
	await store.close()


@pytest.mark.asyncio
async def test_mutation_marks_post_stale():
	store = ReactiveStore()
	store.update_posts(_posts())
	assert store.freshness(2) is Freshness.FRESH
	store.update_post_votes(2, 1, 0)
	assert store.freshness(2) is Freshness.STALE


@pytest.mark.asyncio
async def test_close_cancels_refetches_and_detaches():
	started = asyncio.Event()

	async def _fetch(post_id):
		started.set()
		await asyncio.sleep(10)

	platform = MemoryPlatform(online=False)
	store = ReactiveStore(platform=platform, fetch_post=_fetch)
	store.update_posts(_posts())
	store.invalidate_post(1)
	await started.wait()

	await store.close()

	platform.set_online(True)
	assert len(store.posts.value) == 2
	assert store.freshness(1) is Freshness.STALE


@pytest.mark.asyncio
async def test_view_tracked_once_per_session():
	calls = []

	async def _record(post_id):
		calls.append(post_id)

	store = ReactiveStore()
	store.update_posts(_posts())
	tracker = ViewTracker(store, _record)

	assert await tracker.track(1)
	assert not await tracker.track(1)

	assert calls == [1]
	assert store.get_post(1).views == 4
	assert tracker.has_viewed(1)


@pytest.mark.asyncio
async def test_concurrent_views_send_once():
	calls = []

	async def _record(post_id):
		calls.append(post_id)
		await asyncio.sleep(0.01)

	store = ReactiveStore()
	store.update_posts(_posts())
	tracker = ViewTracker(store, _record)

	results = await asyncio.gather(tracker.track(2), tracker.track(2))

	assert sorted(results) == [False, True]
	assert calls == [2]


@pytest.mark.asyncio
async def test_failed_view_rolls_back_marker_and_count():
	attempts = []

	async def _record(post_id):
		attempts.append(post_id)
		if len(attempts) == 1:
			raise ConnectionError("offline")

	platform = MemoryPlatform()
	store = ReactiveStore(platform=platform)
	store.update_posts(_posts())
	tracker = ViewTracker(store, _record)

	with pytest.raises(ConnectionError):
		await tracker.track(1)
	assert platform.session_get(session_marker(1)) is None
	assert store.get_post(1).views == 3

	assert await tracker.track(1)
	assert store.get_post(1).views == 4
	assert platform.session_get("post_view_1") is not None


def test_index_events_drive_invalidation():
	store = ReactiveStore()
	store.update_posts(_posts())
	signals = []
	store.signals.subscribe(signals.append)

	store.handle_index_event(IndexEvent("post_indexed", 1))
	assert store.freshness(1) is Freshness.STALE
	assert [signal.level for signal in signals] == [InvalidationLevel.POST, InvalidationLevel.SEARCH]

	store.handle_index_event(IndexEvent("post_removed", 2))
	assert [post.id for post in store.posts.value] == [1]

	store.handle_index_event(IndexEvent("index_rebuilt"))
	assert store.posts.value == ()
	assert signals[-1].level is InvalidationLevel.ALL


def test_relay_dispatch_parses_events():
	store = ReactiveStore()
	store.update_posts(_posts())
	relay = IndexEventRelay(store)

	assert relay._dispatch(IndexEvent("post_removed", 1).to_json())
	assert [post.id for post in store.posts.value] == [2]
	assert not relay._dispatch("{broken")
	assert not relay._dispatch('{"kind": "unknown"}')


@pytest.mark.asyncio
async def test_relay_forwards_published_events(indexer):
	store = ReactiveStore()
	store.update_posts(_posts())
	relay = IndexEventRelay(store, poll_timeout=0.01)
	task = asyncio.create_task(relay.run_forever())
	await asyncio.sleep(0.05)

	await indexer.remove_post(1)
	for _ in range(50):
		if store.get_post(1) is None:
			break
		await asyncio.sleep(0.01)

	relay.stop()
	await asyncio.wait_for(task, timeout=1)
	assert store.get_post(1) is None
	assert store.get_post(2) is not None
