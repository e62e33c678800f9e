"""Custom exceptions for search index and query operations."""

from __future__ import annotations


class SearchError(Exception):
	"""Base class for search errors."""

	def __init__(self, detail: str, *, status_code: int = 400) -> None:
		super().__init__(detail)
		self.detail = detail
		self.status_code = status_code


class QueryValidationError(SearchError):
	"""Raised when a search query fails validation."""

	def __init__(self, detail: str, *, status_code: int = 422) -> None:
		super().__init__(detail, status_code=status_code)


class SearchUnavailableError(SearchError):
	"""Raised when the key-value store cannot serve a read."""

	def __init__(self, detail: str = "search_unavailable", *, status_code: int = 503) -> None:
		super().__init__(detail, status_code=status_code)


class IndexWriteError(SearchError):
	"""Raised when an index write step still fails after its retry."""

	def __init__(self, step: str, *, attempts: int) -> None:
		super().__init__(f"index_write_failed:{step}", status_code=500)
		self.step = step
		self.attempts = attempts


class DocumentDecodeError(SearchError):
	"""Raised when a stored document cannot be decoded."""

	def __init__(self, key: str) -> None:
		super().__init__(f"document_decode_failed:{key}", status_code=500)
		self.key = key


class InvalidMaintenanceAction(SearchError):
	"""Raised for maintenance actions other than reindex/clear."""

	code = "invalid_action"

	def __init__(self, action: object) -> None:
		super().__init__("Invalid action", status_code=400)
		self.action = action


__all__ = [
	"SearchError",
	"QueryValidationError",
	"SearchUnavailableError",
	"IndexWriteError",
	"DocumentDecodeError",
	"InvalidMaintenanceAction",
]
