"""Redis-backed JSON cache for search and feed results."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

from redis.exceptions import RedisError

from postsearch.index import keys
from postsearch.infra.redis import RedisProxy, redis_client
from postsearch.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

CacheBuilder = Callable[[], Awaitable[Any]]


class CacheLayer:
	"""JSON cache with expiry, an explicit key registry, and singleflight builds.

	Every written key is also added to ``cache:keys:{kind}`` so invalidation
	deletes exactly what was written without scanning the keyspace.
	"""

	def __init__(self, redis: RedisProxy | None = None) -> None:
		self.redis = redis or redis_client
		self._locks: dict[str, asyncio.Lock] = {}
		self._waiters: dict[str, int] = {}

	def key_for(self, kind: str, params: Mapping[str, Any]) -> str:
		return keys.cache_key(kind, params)

	@asynccontextmanager
	async def _singleflight(self, key: str) -> AsyncIterator[None]:
		"""Serialize builds per key; the lock is dropped once nobody holds or awaits it."""

		lock = self._locks.setdefault(key, asyncio.Lock())
		self._waiters[key] = self._waiters.get(key, 0) + 1
		try:
			async with lock:
				yield
		finally:
			self._waiters[key] -= 1
			if not self._waiters[key]:
				del self._waiters[key]
				del self._locks[key]

	async def get(self, key: str) -> Any | None:
		raw = await self.redis.get(key)
		if not raw:
			return None
		try:
			decoded = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
			return json.loads(decoded)
		except json.JSONDecodeError:
			_LOG.warning("cache.payload_undecodable", extra={"key": key})
			return None

	async def set(self, kind: str, key: str, value: Any, *, ttl: int) -> None:
		pipe = self.redis.pipeline(transaction=False)
		pipe.set(key, json.dumps(value, separators=(",", ":")), ex=ttl)
		pipe.sadd(keys.cache_registry_key(kind), key)
		await pipe.execute()

	async def _store(self, kind: str, key: str, value: Any, *, ttl: int) -> bool:
		for attempt in (1, 2):
			try:
				await self.set(kind, key, value, ttl=ttl)
				return True
			except RedisError:
				_LOG.warning("cache.write_failed", extra={"key": key, "attempt": attempt})
		obs_metrics.CACHE_WRITE_FAILURES.labels(kind=kind).inc()
		_LOG.error("cache.write_abandoned", extra={"key": key})
		return False

	async def get_or_build(
		self,
		kind: str,
		params: Mapping[str, Any],
		*,
		ttl: int,
		builder: CacheBuilder,
	) -> Any:
		"""Return the cached payload for ``params`` or build, store, and return it."""

		key = self.key_for(kind, params)
		cached = await self.get(key)
		if cached is not None:
			obs_metrics.record_cache_lookup(kind, hit=True)
			return cached
		async with self._singleflight(key):
			cached = await self.get(key)
			if cached is not None:
				obs_metrics.record_cache_lookup(kind, hit=True)
				return cached
			obs_metrics.record_cache_lookup(kind, hit=False)
			value = await builder()
			await self._store(kind, key, value, ttl=ttl)
			return value

	async def invalidate(self, kind: str) -> int:
		"""Drop every registered entry of ``kind``; returns the number of keys deleted."""

		registry = keys.cache_registry_key(kind)
		members = list(await self.redis.smembers(registry))
		pipe = self.redis.pipeline(transaction=True)
		if members:
			pipe.delete(*members)
		pipe.delete(registry)
		results = await pipe.execute()
		removed = int(results[0]) if members else 0
		if removed:
			obs_metrics.CACHE_INVALIDATIONS.labels(kind=kind).inc(removed)
		return removed

	async def invalidate_all(self) -> int:
		removed = 0
		for kind in keys.CACHE_KINDS:
			removed += await self.invalidate(kind)
		return removed

	async def purge(self) -> int:
		"""Maintenance sweep: registry entries plus anything matching the cache prefixes."""

		removed = await self.invalidate_all()
		for kind in keys.CACHE_KINDS:
			stray = await self.redis.scan_keys(keys.cache_prefix(kind))
			if stray:
				removed += int(await self.redis.delete(*stray))
		return removed

	async def registered_keys(self, kind: str) -> int:
		return int(await self.redis.scard(keys.cache_registry_key(kind)))


__all__ = ["CacheLayer", "CacheBuilder"]
