"""Read-only access to the platform's primary store."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from postsearch.infra.postgres import get_pool
from postsearch.primary.models import PostRecord


class PrimaryStore(Protocol):
	"""Collaborator surface the indexer and query service depend on."""

	async def list_published_posts(self, *, after_id: Optional[int], limit: int) -> list[PostRecord]:
		...

	async def get_post(self, post_id: int) -> Optional[PostRecord]:
		...


_POST_SELECT = """
	SELECT
		p.id,
		p.title,
		COALESCE(p.prompt, '') AS prompt,
		p."contentBlocks"::text AS content_blocks,
		p."categoryId" AS category_id,
		p.status::text AS status,
		p."isLatest" AS is_latest,
		p."createdAt" AS created_at,
		COALESCE(p."upVotes", 0) AS up_votes,
		COALESCE(p."downVotes", 0) AS down_votes,
		COALESCE(a.views, 0) AS views,
		COALESCE(a."sourceClicks", 0) AS source_clicks,
		COALESCE(
			array_agg(u.name ORDER BY u.name) FILTER (WHERE u.name IS NOT NULL),
			'{}'
		) AS authors
	FROM "Post" p
	LEFT JOIN "Analytics" a ON a."postId" = p.id
	LEFT JOIN "PostAuthor" pa ON pa."postId" = p.id
	LEFT JOIN "User" u ON u.id = pa."userId"
"""

_POST_GROUP = """
	GROUP BY p.id, a.views, a."sourceClicks"
"""


def _to_record(row: Mapping[str, Any]) -> PostRecord:
	data = dict(row)
	data["authors"] = list(data.get("authors") or [])
	return PostRecord.model_validate(data)


class PostgresPrimaryStore:
	"""asyncpg-backed primary store reading the platform's post tables."""

	async def list_published_posts(self, *, after_id: Optional[int], limit: int) -> list[PostRecord]:
		"""Published, latest posts with ``id > after_id`` in ascending id order."""

		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				_POST_SELECT
				+ """
				WHERE p.status = 'PUBLISHED'
				AND p."isLatest" = true
				AND ($1::int IS NULL OR p.id > $1)
				"""
				+ _POST_GROUP
				+ """
				ORDER BY p.id ASC
				LIMIT $2
				""",
				after_id,
				limit,
			)
		return [_to_record(row) for row in rows]

	async def get_post(self, post_id: int) -> Optional[PostRecord]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				_POST_SELECT + "WHERE p.id = $1" + _POST_GROUP,
				post_id,
			)
		return _to_record(row) if row else None


__all__ = ["PrimaryStore", "PostgresPrimaryStore"]
