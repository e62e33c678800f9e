"""Validation helpers for search inputs."""

from __future__ import annotations

from postsearch.index import exceptions

SORT_MODES = ("relevance", "date", "views", "votes")
MAX_QUERY_LENGTH = 100
MAX_SEARCH_LIMIT = 50
MAX_SUGGESTION_LIMIT = 10
MAX_SUGGESTION_QUERY_LENGTH = 50


def normalize_query(value: str | None) -> str:
	"""Collapse whitespace and trim surrounding spaces."""

	if not value:
		return ""
	return " ".join(value.strip().split())


def ensure_search_allowed(query: str, *, sort_by: str, limit: int, offset: int) -> None:
	if len(query) > MAX_QUERY_LENGTH:
		raise exceptions.QueryValidationError("query_too_long")
	if sort_by not in SORT_MODES:
		raise exceptions.QueryValidationError("invalid_sort")
	ensure_page_allowed(limit=limit, offset=offset)


def ensure_page_allowed(*, limit: int, offset: int) -> None:
	if limit < 1 or limit > MAX_SEARCH_LIMIT:
		raise exceptions.QueryValidationError("invalid_limit")
	if offset < 0:
		raise exceptions.QueryValidationError("invalid_offset")


def ensure_suggestions_allowed(query: str, *, limit: int) -> None:
	if len(query) > MAX_SUGGESTION_QUERY_LENGTH:
		raise exceptions.QueryValidationError("query_too_long")
	if limit < 1 or limit > MAX_SUGGESTION_LIMIT:
		raise exceptions.QueryValidationError("invalid_limit")
