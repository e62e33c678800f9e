import pytest

from postsearch.index import codec
from postsearch.index.exceptions import SearchUnavailableError


async def _seed(indexer, make_record):
	for post_id, votes in ((1, 5), (2, 2), (3, 9)):
		await indexer.index_post(codec.from_record(make_record(post_id, title=f"Energy story {post_id}", up_votes=votes)))


@pytest.mark.asyncio
async def test_search_posts_endpoint(api_client, indexer, make_record):
	await _seed(indexer, make_record)

	response = await api_client.get("/search/posts", params={"q": "energy", "sort_by": "votes"})

	assert response.status_code == 200
	payload = response.json()
	assert [item["net_votes"] for item in payload["items"]] == [9, 5, 2]
	assert payload["total"] == 3
	assert response.headers["X-Request-Id"]


@pytest.mark.asyncio
async def test_search_posts_validation(api_client):
	response = await api_client.get("/search/posts", params={"q": "x", "limit": 500})
	assert response.status_code == 422
	assert response.json()["detail"] == "validation_error"

	response = await api_client.get("/search/posts", params={"sort_by": "random"})
	assert response.status_code == 422


@pytest.mark.asyncio
async def test_search_unavailable_maps_to_503(api_client, indexer, monkeypatch):
	from postsearch.api import deps

	async def _down(*args, **kwargs):
		raise SearchUnavailableError()

	monkeypatch.setattr(deps.get_query_service(), "search", _down)
	response = await api_client.get("/search/posts", params={"q": "energy"})
	assert response.status_code == 503
	assert response.json()["detail"] == "search_unavailable"


@pytest.mark.asyncio
async def test_suggestions_and_popular(api_client, indexer, make_record):
	await _seed(indexer, make_record)

	suggestions = await api_client.get("/search/suggestions", params={"q": "ener", "limit": 2})
	popular = await api_client.get("/search/popular")

	assert suggestions.status_code == 200
	assert len(suggestions.json()["items"]) == 2
	assert popular.status_code == 200
	assert popular.json()["items"]


@pytest.mark.asyncio
async def test_feed_endpoint(api_client, indexer, make_record):
	await _seed(indexer, make_record)
	response = await api_client.get("/feed", params={"limit": 2})
	assert response.status_code == 200
	assert [item["id"] for item in response.json()["items"]] == [3, 2]


@pytest.mark.asyncio
async def test_http_query_client_round_trip(api_client, indexer, make_record):
	from postsearch.client.transport import HttpQueryClient

	await _seed(indexer, make_record)
	client = HttpQueryClient(client=api_client)

	page = await client.search("energy", sort_by="date", limit=2)
	titles = await client.suggestions("energy")

	assert [hit.id for hit in page.items] == [3, 2]
	assert titles[0].startswith("Energy story")
	assert isinstance(await client.popular_searches(), list)
	await client.aclose()


@pytest.mark.asyncio
async def test_health_and_metrics(api_client, monkeypatch):
	from postsearch.settings import settings

	monkeypatch.setattr(settings, "obs_metrics_public", True)
	live = await api_client.get("/health/live")
	metrics = await api_client.get("/metrics")
	assert live.json()["status"] == "ok"
	assert metrics.status_code == 200
	assert "postsearch_index_writes_total" in metrics.text
