import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from postsearch.api import deps
from postsearch.infra import postgres
from postsearch.main import app
from postsearch.primary.models import PostRecord
from postsearch.settings import settings

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class StubPrimaryStore:
	"""In-memory stand-in for the Postgres primary store."""

	def __init__(self, records=()):
		self.records = {record.id: record for record in records}
		self.list_calls = 0
		self.get_calls = 0

	def put(self, record):
		self.records[record.id] = record

	def drop(self, post_id):
		self.records.pop(post_id, None)

	async def list_published_posts(self, *, after_id, limit):
		self.list_calls += 1
		ids = sorted(
			post_id
			for post_id, record in self.records.items()
			if record.searchable and (after_id is None or post_id > after_id)
		)
		return [self.records[post_id] for post_id in ids[:limit]]

	async def get_post(self, post_id):
		self.get_calls += 1
		return self.records.get(post_id)


def build_record(post_id, **overrides):
	data = {
		"id": post_id,
		"title": f"Post {post_id}",
		"prompt": "",
		"content_blocks": {"blocks": [{"type": "paragraph", "content": f"Body of post {post_id}"}]},
		"category_id": 1,
		"created_at": BASE_TIME + timedelta(hours=post_id),
	}
	data.update(overrides)
	return PostRecord.model_validate(data)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from postsearch.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	original_token = settings.search_admin_token
	original_listener = settings.change_listener_enabled
	settings.search_admin_token = None
	settings.change_listener_enabled = False
	try:
		yield
	finally:
		settings.search_admin_token = original_token
		settings.change_listener_enabled = original_listener


@pytest.fixture(autouse=True)
def reset_services():
	deps.reset_services()
	yield
	deps.reset_services()


@pytest.fixture
def make_record():
	return build_record


@pytest.fixture
def primary_store():
	return StubPrimaryStore()


@pytest.fixture
def indexer(primary_store):
	deps.configure(primary=primary_store)
	return deps.get_indexer()


@pytest.fixture
def query_service(indexer):
	return deps.get_query_service()


@pytest_asyncio.fixture
async def api_client(indexer):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
