"""Process-wide service instances shared by the HTTP routes and workers."""

from __future__ import annotations

from typing import Optional

from postsearch.index.indexer import SearchIndexer
from postsearch.primary.repository import PrimaryStore
from postsearch.query.service import QueryService

_indexer: Optional[SearchIndexer] = None
_query_service: Optional[QueryService] = None


def configure(*, primary: PrimaryStore | None = None) -> None:
	"""Rebuild the shared services, optionally around a different primary store."""

	global _indexer, _query_service
	_indexer = SearchIndexer(primary=primary)
	_query_service = QueryService(
		ranking=_indexer.ranking,
		cache=_indexer.cache,
		primary=_indexer.primary,
		indexer=_indexer,
	)


def get_indexer() -> SearchIndexer:
	if _indexer is None:
		configure()
	assert _indexer is not None
	return _indexer


def get_query_service() -> QueryService:
	if _query_service is None:
		configure()
	assert _query_service is not None
	return _query_service


def reset_services() -> None:
	global _indexer, _query_service
	_indexer = None
	_query_service = None


__all__ = ["configure", "get_indexer", "get_query_service", "reset_services"]
