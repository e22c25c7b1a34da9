"""Observers: the receiving end of a subscription.

An observer gets ``on_next`` once per row, in server order, followed by
exactly one terminal callback: ``on_completed``, ``on_error`` or
``on_cancelled``.  Callbacks run on the subscription's reader thread, and the
next row is not read until ``on_next`` returns.
"""
from __future__ import annotations

from typing import Any, Callable


class Observer:
    """Base observer; override the callbacks you need."""

    def on_next(self, record: Any) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass

    def on_completed(self) -> None:
        pass

    def on_cancelled(self) -> None:
        pass


class CallbackObserver(Observer):
    """Observer assembled from plain callables.

    Args:
        on_next: Called with each record.
        on_error: Called once with the error that faulted the subscription.
        on_completed: Called once when the stream ends normally.
        on_cancelled: Called once after a caller-requested cancellation.
    """

    def __init__(
        self,
        on_next: Callable[[Any], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        on_completed: Callable[[], None] | None = None,
        on_cancelled: Callable[[], None] | None = None,
    ) -> None:
        self._on_next = on_next
        self._on_error = on_error
        self._on_completed = on_completed
        self._on_cancelled = on_cancelled

    def on_next(self, record: Any) -> None:
        if self._on_next is not None:
            self._on_next(record)

    def on_error(self, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(error)

    def on_completed(self) -> None:
        if self._on_completed is not None:
            self._on_completed()

    def on_cancelled(self) -> None:
        if self._on_cancelled is not None:
            self._on_cancelled()


class CollectingObserver(Observer):
    """Observer that records everything it receives."""

    def __init__(self) -> None:
        self.records: list[Any] = []
        self.error: BaseException | None = None
        self.completed = False
        self.cancelled = False

    def on_next(self, record: Any) -> None:
        self.records.append(record)

    def on_error(self, error: BaseException) -> None:
        self.error = error

    def on_completed(self) -> None:
        self.completed = True

    def on_cancelled(self) -> None:
        self.cancelled = True
