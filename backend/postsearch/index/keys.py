"""Key layout for the Redis-resident search index.

Maintenance tooling relies on these names, so changes here are breaking.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

DOCUMENT_PREFIX = "post:"
SEARCH_CACHE_PREFIX = "search:"
FEED_CACHE_PREFIX = "feed:"

BY_DATE = "posts:by_date"
BY_VIEWS = "posts:by_views"
BY_VOTES = "posts:by_votes"
MEMBERSHIP = "posts:indexed"
REPAIR = "posts:repair"
RANKINGS = (BY_DATE, BY_VIEWS, BY_VOTES)

POPULAR_QUERIES = "queries:popular"
EVENTS_CHANNEL = "index:events"

_CACHE_PREFIXES = {"search": SEARCH_CACHE_PREFIX, "feed": FEED_CACHE_PREFIX}


def document_key(post_id: int) -> str:
	return f"{DOCUMENT_PREFIX}{int(post_id)}"


def post_id_from_key(key: str) -> int | None:
	if not key.startswith(DOCUMENT_PREFIX):
		return None
	suffix = key[len(DOCUMENT_PREFIX):]
	return int(suffix) if suffix.isdigit() else None


def params_hash(params: Mapping[str, Any]) -> str:
	"""Deterministic digest of a parameter mapping (key order independent)."""

	blob = json.dumps(dict(params), sort_keys=True, separators=(",", ":"), default=str)
	return hashlib.sha1(blob.encode("utf-8")).hexdigest()


def cache_prefix(kind: str) -> str:
	try:
		return _CACHE_PREFIXES[kind]
	except KeyError:
		raise ValueError(f"unknown cache kind: {kind}") from None


def cache_key(kind: str, params: Mapping[str, Any]) -> str:
	return f"{cache_prefix(kind)}{params_hash(params)}"


def cache_registry_key(kind: str) -> str:
	cache_prefix(kind)
	return f"cache:keys:{kind}"


CACHE_KINDS = tuple(_CACHE_PREFIXES)


__all__ = [
	"DOCUMENT_PREFIX",
	"SEARCH_CACHE_PREFIX",
	"FEED_CACHE_PREFIX",
	"BY_DATE",
	"BY_VIEWS",
	"BY_VOTES",
	"MEMBERSHIP",
	"REPAIR",
	"RANKINGS",
	"POPULAR_QUERIES",
	"EVENTS_CHANNEL",
	"CACHE_KINDS",
	"document_key",
	"post_id_from_key",
	"params_hash",
	"cache_prefix",
	"cache_key",
	"cache_registry_key",
]
