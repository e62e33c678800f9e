"""Observable state holders for client sessions.

A :class:`StateSubject` owns a current value; consumers get a read-only
:class:`StateStream` view that replays the latest value on subscribe and
skips values equal to the current one. :class:`SignalStream` is the
non-deduplicated variant used for one-shot notifications.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

_LOG = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]
Unsubscribe = Callable[[], None]


def _notify(subscribers: list[Subscriber], value: object, *, name: str) -> None:
	for subscriber in list(subscribers):
		try:
			subscriber(value)
		except Exception:
			_LOG.exception("client_stream.subscriber_failed", extra={"stream": name})


class StateSubject(Generic[T]):
	def __init__(self, initial: T, *, name: str = "state") -> None:
		self.name = name
		self._value = initial
		self._subscribers: list[Subscriber] = []
		self._view = StateStream(self)

	@property
	def value(self) -> T:
		return self._value

	def next(self, value: T) -> bool:
		"""Publish ``value``; returns False when it equals the current value."""
		if value == self._value:
			return False
		self._value = value
		_notify(self._subscribers, value, name=self.name)
		return True

	def subscribe(self, subscriber: Subscriber) -> Unsubscribe:
		self._subscribers.append(subscriber)
		subscriber(self._value)

		def _unsubscribe() -> None:
			if subscriber in self._subscribers:
				self._subscribers.remove(subscriber)

		return _unsubscribe

	def as_stream(self) -> "StateStream[T]":
		return self._view

	def complete(self) -> None:
		self._subscribers.clear()


class StateStream(Generic[T]):
	"""Read-only view over a :class:`StateSubject`."""

	def __init__(self, subject: StateSubject[T]) -> None:
		self._subject = subject

	@property
	def value(self) -> T:
		return self._subject.value

	def subscribe(self, subscriber: Subscriber) -> Unsubscribe:
		return self._subject.subscribe(subscriber)


class SignalStream(Generic[T]):
	"""Fan-out of discrete events; no replay and no deduplication."""

	def __init__(self, *, name: str = "signals") -> None:
		self.name = name
		self._subscribers: list[Subscriber] = []

	def emit(self, value: T) -> None:
		_notify(self._subscribers, value, name=self.name)

	def subscribe(self, subscriber: Subscriber) -> Unsubscribe:
		self._subscribers.append(subscriber)

		def _unsubscribe() -> None:
			if subscriber in self._subscribers:
				self._subscribers.remove(subscriber)

		return _unsubscribe

	def complete(self) -> None:
		self._subscribers.clear()


__all__ = ["StateSubject", "StateStream", "SignalStream", "Subscriber", "Unsubscribe"]
