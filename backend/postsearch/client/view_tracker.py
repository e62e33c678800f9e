"""At-most-once-per-session view counting."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from postsearch.client.platform import Platform
from postsearch.client.store import ReactiveStore

_LOG = logging.getLogger(__name__)

ViewRecorder = Callable[[int], Awaitable[object]]


def session_marker(post_id: int) -> str:
	return f"post_view_{post_id}"


class ViewTracker:
	"""Records a post view once per session.

	The session marker is set before the increment call is awaited, so a
	second call for the same post during the first one is a no-op. A failed
	increment removes the marker and reverts the optimistic count.
	"""

	def __init__(
		self,
		store: ReactiveStore,
		record_view: ViewRecorder,
		*,
		platform: Platform | None = None,
	) -> None:
		self.store = store
		self.platform = platform or store.platform
		self._record_view = record_view

	def has_viewed(self, post_id: int) -> bool:
		return self.platform.session_get(session_marker(post_id)) is not None

	async def track(self, post_id: int) -> bool:
		"""Returns True when this call issued the increment."""
		marker = session_marker(post_id)
		if self.platform.session_get(marker) is not None:
			return False
		self.platform.session_set(marker, "true")
		counted = self.store.track_post_view(post_id)
		try:
			await self._record_view(post_id)
		except Exception:
			self.platform.session_remove(marker)
			if counted:
				self.store.revert_post_view(post_id)
			_LOG.warning("view_tracker.increment_failed", extra={"post_id": post_id})
			raise
		return True


__all__ = ["ViewTracker", "ViewRecorder", "session_marker"]
