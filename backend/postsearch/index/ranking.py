"""Redis structures backing the ranked index.

Three sorted sets order indexed posts by creation time, views, and net votes;
a plain set tracks membership, and each document lives under ``post:{id}``.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

from postsearch.index import codec, exceptions, keys
from postsearch.index.codec import IndexedDocument
from postsearch.infra.redis import RedisProxy, redis_client

_LOG = logging.getLogger(__name__)

SORT_RANKINGS = {
	"date": keys.BY_DATE,
	"views": keys.BY_VIEWS,
	"votes": keys.BY_VOTES,
}

_MGET_CHUNK = 200


def ranking_scores(document: IndexedDocument) -> dict[str, float]:
	return {
		keys.BY_DATE: document.created_ts,
		keys.BY_VIEWS: float(document.views),
		keys.BY_VOTES: float(document.net_votes),
	}


class RankingStore:
	"""Reads and stages writes against the ranking structures."""

	def __init__(self, redis: RedisProxy | None = None) -> None:
		self.redis = redis or redis_client

	def pipeline(self, *, transaction: bool = True) -> Any:
		return self.redis.pipeline(transaction=transaction)

	# --- write staging -------------------------------------------------

	def stage_upsert(self, pipe: Any, document: IndexedDocument) -> None:
		"""Queue a full overwrite of one post: document first, then rankings."""

		member = str(document.id)
		pipe.set(keys.document_key(document.id), codec.encode(document))
		for ranking, score in ranking_scores(document).items():
			pipe.zadd(ranking, {member: score})
		pipe.sadd(keys.MEMBERSHIP, member)

	def stage_remove(self, pipe: Any, post_id: int) -> None:
		"""Queue removal of one post: rankings first, then the document."""

		member = str(post_id)
		for ranking in keys.RANKINGS:
			pipe.zrem(ranking, member)
		pipe.srem(keys.MEMBERSHIP, member)
		pipe.srem(keys.REPAIR, member)
		pipe.delete(keys.document_key(post_id))

	def stage_clear(self, pipe: Any, document_keys: Iterable[str]) -> None:
		pipe.delete(*keys.RANKINGS, keys.MEMBERSHIP, keys.REPAIR)
		batch = list(document_keys)
		for start in range(0, len(batch), _MGET_CHUNK):
			pipe.delete(*batch[start:start + _MGET_CHUNK])

	# --- reads ----------------------------------------------------------

	async def ids_desc(self, ranking: str, *, start: int = 0, stop: int = -1) -> list[int]:
		members = await self.redis.zrevrange(ranking, start, stop)
		return [int(member) for member in members]

	async def cardinality(self, ranking: str) -> int:
		return int(await self.redis.zcard(ranking))

	async def membership(self) -> set[int]:
		members = await self.redis.smembers(keys.MEMBERSHIP)
		return {int(member) for member in members}

	async def is_member(self, post_id: int) -> bool:
		return bool(await self.redis.sismember(keys.MEMBERSHIP, str(post_id)))

	async def known_ids(self) -> set[int]:
		"""Union of membership and every ranking, including partially indexed ids."""

		ids = await self.membership()
		for ranking in keys.RANKINGS:
			ids.update(await self.ids_desc(ranking))
		return ids

	async def get_document(self, post_id: int) -> IndexedDocument | None:
		key = keys.document_key(post_id)
		raw = await self.redis.get(key)
		if raw is None:
			return None
		return codec.decode(raw, key=key)

	async def load_documents(self, post_ids: Sequence[int]) -> tuple[dict[int, IndexedDocument], list[int]]:
		"""Fetch documents for ``post_ids``; returns (found, missing)."""

		found: dict[int, IndexedDocument] = {}
		missing: list[int] = []
		for start in range(0, len(post_ids), _MGET_CHUNK):
			chunk = list(post_ids[start:start + _MGET_CHUNK])
			rows = await self.redis.mget([keys.document_key(post_id) for post_id in chunk])
			for post_id, raw in zip(chunk, rows):
				if raw is None:
					missing.append(post_id)
					continue
				try:
					found[post_id] = codec.decode(raw, key=keys.document_key(post_id))
				except exceptions.DocumentDecodeError:
					_LOG.warning("ranking_store.document_undecodable", extra={"post_id": post_id})
					missing.append(post_id)
		return found, missing

	async def flag_for_repair(self, post_ids: Iterable[int]) -> None:
		members = [str(post_id) for post_id in post_ids]
		if members:
			await self.redis.sadd(keys.REPAIR, *members)

	async def repair_ids(self) -> set[int]:
		return {int(member) for member in await self.redis.smembers(keys.REPAIR)}


__all__ = ["RankingStore", "SORT_RANKINGS", "ranking_scores"]
