"""Central registry for Prometheus metrics used across the search service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"postsearch_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"postsearch_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

INDEX_WRITES = Counter(
	"postsearch_index_writes_total",
	"Index write operations by outcome",
	["op", "result"],
)

INDEX_WRITE_RETRIES = Counter(
	"postsearch_index_write_retries_total",
	"Index write steps retried after a store error",
	["op"],
)

REINDEX_DURATION = Histogram(
	"postsearch_reindex_duration_seconds",
	"Duration of full reindex runs",
	buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

REINDEX_DOCUMENTS = Counter(
	"postsearch_reindex_documents_total",
	"Documents written by full reindex runs",
)

CACHE_LOOKUPS = Counter(
	"postsearch_cache_lookups_total",
	"Query cache lookups",
	["kind", "result"],
)

CACHE_INVALIDATIONS = Counter(
	"postsearch_cache_invalidations_total",
	"Cache entries dropped by explicit invalidation",
	["kind"],
)

CACHE_WRITE_FAILURES = Counter(
	"postsearch_cache_write_failures_total",
	"Cache writes that failed after retry",
	["kind"],
)

CONSISTENCY_VIOLATIONS = Counter(
	"postsearch_consistency_violations_total",
	"Ranked identifiers found without an indexed document",
)

SEARCH_QUERIES = Counter(
	"postsearch_search_queries_total",
	"Search queries executed",
	["kind"],
)

SEARCH_LATENCY = Histogram(
	"postsearch_search_latency_seconds",
	"Search latency in seconds",
	["kind"],
	buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

CHANGE_EVENTS = Counter(
	"postsearch_change_events_total",
	"Primary store change notifications handled",
	["operation", "result"],
)

REDIS_UP = Gauge("postsearch_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("postsearch_redis_latency_seconds", "Redis ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def record_index_write(op: str, *, ok: bool) -> None:
	INDEX_WRITES.labels(op=op, result="ok" if ok else "failed").inc()


def record_cache_lookup(kind: str, *, hit: bool) -> None:
	CACHE_LOOKUPS.labels(kind=kind, result="hit" if hit else "miss").inc()


def inc_search_query(kind: str) -> None:
	SEARCH_QUERIES.labels(kind=kind).inc()


def observe_search_latency(kind: str, latency_seconds: float) -> None:
	SEARCH_LATENCY.labels(kind=kind).observe(latency_seconds)
