import pytest
from prometheus_client import REGISTRY
from redis.exceptions import ConnectionError as RedisConnectionError

from postsearch.index import codec, keys
from postsearch.index.exceptions import QueryValidationError, SearchUnavailableError
from postsearch.index.ranking import RankingStore
from postsearch.query.service import QueryService
from postsearch.settings import settings


async def _index(indexer, *records):
	for record in records:
		outcome = await indexer.index_post(codec.from_record(record))
		assert outcome.ok


class _BrokenRedis:
	async def zrevrange(self, *args, **kwargs):
		raise RedisConnectionError("down")

	async def get(self, *args, **kwargs):
		raise RedisConnectionError("down")


@pytest.mark.asyncio
async def test_votes_sort_orders_by_net_votes(indexer, query_service, make_record):
	await _index(
		indexer,
		make_record(1, up_votes=5),
		make_record(2, up_votes=2),
		make_record(3, up_votes=9),
	)

	page = await query_service.search(sort_by="votes")

	assert [hit.net_votes for hit in page.items] == [9, 5, 2]
	assert page.total == 3


@pytest.mark.asyncio
async def test_date_and_views_sorts(indexer, query_service, make_record):
	await _index(indexer, make_record(1, views=50), make_record(2, views=10), make_record(3, views=30))

	by_date = await query_service.search(sort_by="date")
	by_views = await query_service.search(sort_by="views")

	assert [hit.id for hit in by_date.items] == [3, 2, 1]
	assert [hit.id for hit in by_views.items] == [1, 3, 2]


@pytest.mark.asyncio
async def test_category_filter_and_paging(indexer, query_service, make_record):
	await _index(
		indexer,
		*[make_record(post_id, category_id=1 if post_id % 2 else 2) for post_id in range(1, 8)],
	)

	page = await query_service.search(sort_by="date", category_id=1, limit=2, offset=1)

	assert [hit.id for hit in page.items] == [5, 3]
	assert page.total == 4
	assert page.category_id == 1


@pytest.mark.asyncio
async def test_relevance_prefers_title_matches(indexer, query_service, make_record):
	await _index(
		indexer,
		make_record(1, title="Markets today", prompt="Climate policy moves markets"),
		make_record(2, title="Climate change report", prompt="New data"),
		make_record(3, title="Sports roundup", prompt="Nothing relevant"),
		make_record(4, title="Climate summit", prompt="Leaders meet"),
	)

	page = await query_service.search("climate")

	assert [hit.id for hit in page.items] == [4, 2, 1]
	assert page.total == 3
	assert page.items[0].score > page.items[-1].score


@pytest.mark.asyncio
async def test_relevance_blank_query_is_empty(indexer, query_service, make_record):
	await _index(indexer, make_record(1))
	page = await query_service.search("   ")
	assert page.items == []
	assert page.total == 0


@pytest.mark.asyncio
async def test_ranked_sort_filters_by_query_terms(indexer, query_service, make_record):
	await _index(
		indexer,
		make_record(1, title="Election night", views=5),
		make_record(2, title="Weather", views=500),
		make_record(3, title="Election recap", views=50),
	)
	page = await query_service.search("election", sort_by="views")
	assert [hit.id for hit in page.items] == [3, 1]


@pytest.mark.asyncio
async def test_cache_hit_skips_ranking_store(indexer, query_service, make_record, monkeypatch):
	await _index(indexer, make_record(1), make_record(2))
	calls = []
	original = query_service.ranking.ids_desc

	async def _counting(*args, **kwargs):
		calls.append(args)
		return await original(*args, **kwargs)

	monkeypatch.setattr(query_service.ranking, "ids_desc", _counting)

	first = await query_service.search(sort_by="date")
	second = await query_service.search(sort_by="date")

	assert first == second
	assert len(calls) == 1


@pytest.mark.asyncio
async def test_mutation_invalidates_cached_search(indexer, query_service, make_record):
	await _index(indexer, make_record(1))
	assert (await query_service.search(sort_by="date")).total == 1

	await _index(indexer, make_record(2))
	page = await query_service.search(sort_by="date")
	assert [hit.id for hit in page.items] == [2, 1]

	await indexer.remove_post(2)
	page = await query_service.search(sort_by="date")
	assert [hit.id for hit in page.items] == [1]


@pytest.mark.asyncio
async def test_removed_post_never_returned(indexer, query_service, make_record):
	await _index(indexer, make_record(1, title="Ocean"), make_record(2, title="Ocean floor"))
	await indexer.remove_post(1)
	for sort_by in ("relevance", "date", "views", "votes"):
		page = await query_service.search("ocean", sort_by=sort_by)
		assert 1 not in [hit.id for hit in page.items]


@pytest.mark.asyncio
async def test_ranked_id_without_document_is_skipped(indexer, query_service, fake_redis, make_record):
	await _index(indexer, make_record(1), make_record(2))
	await fake_redis.zadd(keys.BY_DATE, {"99": 10_000_000_000})
	before = REGISTRY.get_sample_value("postsearch_consistency_violations_total") or 0.0

	page = await query_service.search(sort_by="date")

	assert [hit.id for hit in page.items] == [2, 1]
	assert await query_service.ranking.repair_ids() == {99}
	assert REGISTRY.get_sample_value("postsearch_consistency_violations_total") == before + 1

	await indexer.reindex_all()
	assert await query_service.ranking.repair_ids() == set()
	assert await fake_redis.zscore(keys.BY_DATE, "99") is None


@pytest.mark.asyncio
async def test_cached_page_echoes_callers_query(indexer, query_service, make_record):
	await _index(indexer, make_record(1, title="Rust tips"))

	first = await query_service.search("rust")
	second = await query_service.search("Rust")

	assert first.query == "rust"
	assert second.query == "Rust"
	assert [hit.id for hit in second.items] == [hit.id for hit in first.items] == [1]
	assert await query_service.cache.registered_keys("search") == 1


@pytest.mark.asyncio
async def test_unfiltered_ranked_page_loads_only_the_page(indexer, query_service, make_record, monkeypatch):
	await _index(indexer, *[make_record(n, views=n * 10) for n in range(1, 6)])
	loaded = []
	original = query_service.ranking.load_documents

	async def _spy(ids):
		loaded.append(list(ids))
		return await original(ids)

	monkeypatch.setattr(query_service.ranking, "load_documents", _spy)

	page = await query_service.search(sort_by="views", limit=2, offset=1)

	assert [hit.id for hit in page.items] == [4, 3]
	assert page.total == 5
	assert loaded == [[4, 3]]


@pytest.mark.asyncio
async def test_search_validation(query_service):
	with pytest.raises(QueryValidationError):
		await query_service.search("x" * 101)
	with pytest.raises(QueryValidationError):
		await query_service.search("ok", limit=0)
	with pytest.raises(QueryValidationError):
		await query_service.search("ok", sort_by="random")


@pytest.mark.asyncio
async def test_search_unavailable_when_store_down(query_service):
	broken = QueryService(ranking=RankingStore(_BrokenRedis()), primary=query_service.primary)
	with pytest.raises(SearchUnavailableError):
		await broken.search("anything", sort_by="date")


@pytest.mark.asyncio
async def test_feed_is_newest_first_and_cached(indexer, query_service, fake_redis, make_record):
	await _index(indexer, make_record(1), make_record(2, category_id=5), make_record(3))

	page = await query_service.feed(limit=2)

	assert [hit.id for hit in page.items] == [3, 2]
	assert page.total == 3
	assert await query_service.cache.registered_keys("feed") == 1


@pytest.mark.asyncio
async def test_suggestions_ordered_by_views(indexer, query_service, make_record):
	await _index(
		indexer,
		make_record(1, title="Climate basics", views=5),
		make_record(2, title="Climate change explained", views=90),
		make_record(3, title="Football", views=1000),
		make_record(4, title="Climate change explained", views=10),
	)

	assert await query_service.suggestions("clim") == ["Climate change explained", "Climate basics"]
	assert await query_service.suggestions("clim", limit=1) == ["Climate change explained"]
	assert await query_service.suggestions("zzz") == []
	assert await query_service.suggestions("") == []


@pytest.mark.asyncio
async def test_popular_searches_defaults_then_recorded(indexer, make_record):
	now = [0.0]
	service = QueryService(
		ranking=indexer.ranking,
		cache=indexer.cache,
		primary=indexer.primary,
		indexer=indexer,
		clock=lambda: now[0],
	)

	assert await service.popular_searches() == list(settings.popular_search_defaults)[:settings.popular_searches_size]

	await service.search("Rust")
	await service.search("rust")
	await service.search("python")
	assert (await service.popular_searches())[0] != "rust"

	now[0] += settings.popular_searches_refresh_seconds + 1
	assert await service.popular_searches() == ["rust", "python"]


@pytest.mark.asyncio
async def test_popular_searches_never_raise(query_service):
	broken = QueryService(ranking=RankingStore(_BrokenRedis()), primary=query_service.primary)
	assert await broken.popular_searches() == []


@pytest.mark.asyncio
async def test_get_document_falls_back_to_primary(query_service, primary_store, make_record):
	primary_store.put(make_record(12, title="Only in primary"))

	document = await query_service.get_document(12)

	assert document is not None and document.title == "Only in primary"
	assert await query_service.ranking.get_document(12) is not None
	assert await query_service.get_document(404) is None
