"""Client-session components: reactive store, view tracking, and debounced queries."""

from .orchestrator import DebouncedQueryOrchestrator, QueryState, SearchResults
from .platform import MemoryPlatform, Platform
from .relay import IndexEventRelay
from .store import Freshness, PostState, ReactiveStore
from .transport import HttpQueryClient
from .view_tracker import ViewTracker

__all__ = [
	"DebouncedQueryOrchestrator",
	"QueryState",
	"SearchResults",
	"MemoryPlatform",
	"Platform",
	"IndexEventRelay",
	"Freshness",
	"PostState",
	"ReactiveStore",
	"HttpQueryClient",
	"ViewTracker",
]
