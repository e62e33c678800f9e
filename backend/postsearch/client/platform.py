"""Host capabilities the client components need: session storage and connectivity."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

_LOG = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class Platform(Protocol):
	def session_get(self, key: str) -> Optional[str]:
		...

	def session_set(self, key: str, value: str) -> None:
		...

	def session_remove(self, key: str) -> None:
		...

	def is_online(self) -> bool:
		...

	def on_connectivity_change(self, listener: ConnectivityListener) -> Callable[[], None]:
		...


class MemoryPlatform:
	"""In-process platform; session storage lives as long as the instance."""

	def __init__(self, *, online: bool = True) -> None:
		self._session: dict[str, str] = {}
		self._online = online
		self._listeners: list[ConnectivityListener] = []

	def session_get(self, key: str) -> Optional[str]:
		return self._session.get(key)

	def session_set(self, key: str, value: str) -> None:
		self._session[key] = value

	def session_remove(self, key: str) -> None:
		self._session.pop(key, None)

	def is_online(self) -> bool:
		return self._online

	def on_connectivity_change(self, listener: ConnectivityListener) -> Callable[[], None]:
		self._listeners.append(listener)

		def _remove() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return _remove

	def set_online(self, online: bool) -> None:
		"""Report a connectivity event; listeners hear every report, repeated or not."""
		self._online = online
		for listener in list(self._listeners):
			try:
				listener(online)
			except Exception:
				_LOG.exception("platform.connectivity_listener_failed")


__all__ = ["Platform", "MemoryPlatform", "ConnectivityListener"]
