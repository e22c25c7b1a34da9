"""The subscription engine.

A :class:`Subscription` owns one execution: one reader thread, one
connection and one cancellation token.  Its state machine::

    CREATED ──start──▶ ACTIVE ──end of stream──▶ COMPLETED
       │                 ├────error─────────────▶ FAULTED
       └──cancel──┐      └────cancel────────────▶ CANCELLED
                  └─────────────────────────────▶ CANCELLED

Terminal states never change again, and the observer receives exactly one
terminal callback.  Rows are handed to ``observer.on_next`` on the reader
thread, one at a time; the next row is read only after the callback
returns, so a slow observer slows its own subscription and nothing else.

Cancelling closes the connection only.  A continuous query keeps running on
the server until it is terminated explicitly (see
:meth:`pushql.execute.client.RestApiClient.terminate_push_query`).
"""
from __future__ import annotations

import itertools
import logging
import threading
from enum import Enum
from typing import Any, Callable

from pushql.errors import PushQLError
from pushql.execute.cancellation import CancellationToken
from pushql.execute.execution import RowStream
from pushql.subscription.observers import Observer

logger = logging.getLogger(__name__)

#: Opens the row stream of one execution, honouring the given token.
StreamOpener = Callable[[CancellationToken], RowStream]

_names = itertools.count(1)


class SubscriptionState(str, Enum):
    """Lifecycle states of a subscription."""

    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAULTED = "FAULTED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SubscriptionState.COMPLETED,
            SubscriptionState.FAULTED,
            SubscriptionState.CANCELLED,
        )


class Subscription:
    """Handle of one streaming execution delivering rows to an observer.

    Args:
        open_stream: Opens the execution's :class:`RowStream`; called on the
            reader thread.
        observer: Receives rows and exactly one terminal callback.
        name: Thread name; generated when omitted.
    """

    def __init__(
        self,
        open_stream: StreamOpener,
        observer: Observer,
        name: str | None = None,
    ) -> None:
        self._open_stream = open_stream
        self._observer = observer
        self._token = CancellationToken()
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._state = SubscriptionState.CREATED
        self._error: BaseException | None = None
        self._delivered = 0
        self._query_id: str | None = None
        self._thread: threading.Thread | None = None
        self.name = name or f"pushql-subscription-{next(_names)}"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def error(self) -> BaseException | None:
        """The error carried by a FAULTED subscription."""
        return self._error

    @property
    def delivered(self) -> int:
        """Number of rows handed to the observer."""
        return self._delivered

    @property
    def query_id(self) -> str | None:
        """Server query id, once the header has been received."""
        return self._query_id

    @property
    def done(self) -> bool:
        return self._done.is_set()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def start(self) -> Subscription:
        """Move to ACTIVE and start the reader thread.

        Raises:
            RuntimeError: If the subscription was already started.
        """
        with self._lock:
            if self._state is SubscriptionState.CANCELLED:
                return self
            if self._state is not SubscriptionState.CREATED:
                raise RuntimeError(f"Subscription {self.name} was already started.")
            self._state = SubscriptionState.ACTIVE
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        logger.debug("Subscription %s started", self.name)
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Request cancellation; idempotent and safe from any thread.

        An ACTIVE subscription stops at the next row boundary at the latest.
        """
        with self._lock:
            state = self._state
        if state.is_terminal:
            return
        self._token.cancel()
        if state is SubscriptionState.CREATED:
            self._finish(SubscriptionState.CANCELLED)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a terminal state is reached; returns ``done``."""
        return self._done.wait(timeout)

    def __enter__(self) -> Subscription:
        if self._state is SubscriptionState.CREATED:
            self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()
        self.wait()

    # ------------------------------------------------------------------
    # Reader thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        if self._token.cancelled:
            self._finish(SubscriptionState.CANCELLED)
            return
        stream: RowStream | None = None
        try:
            stream = self._open_stream(self._token)
            with stream:
                stream.read_header()
                self._query_id = stream.query_id
                for record in stream:
                    if self._token.cancelled:
                        break
                    self._observer.on_next(record)
                    self._delivered += 1
        except PushQLError as exc:
            # A fault the stream recorded stays a fault if cancel() raced it.
            failed = stream is not None and stream.fault is exc
            if self._token.cancelled and not failed:
                self._finish(SubscriptionState.CANCELLED)
            else:
                logger.warning("Subscription %s faulted: %s", self.name, exc)
                self._finish(SubscriptionState.FAULTED, exc)
            return
        except Exception as exc:
            logger.exception("Subscription %s faulted unexpectedly", self.name)
            self._finish(SubscriptionState.FAULTED, exc)
            return

        if self._token.cancelled:
            self._finish(SubscriptionState.CANCELLED)
        else:
            self._finish(SubscriptionState.COMPLETED)

    def _finish(self, state: SubscriptionState, error: BaseException | None = None) -> None:
        with self._lock:
            if self._state.is_terminal:
                return
            self._state = state
            self._error = error
        logger.info(
            "Subscription %s %s after %d row(s)", self.name, state.value.lower(), self._delivered
        )
        try:
            if state is SubscriptionState.COMPLETED:
                self._observer.on_completed()
            elif state is SubscriptionState.CANCELLED:
                self._observer.on_cancelled()
            else:
                assert error is not None
                self._observer.on_error(error)
        except Exception:
            logger.exception("Terminal callback of subscription %s raised", self.name)
        finally:
            self._done.set()
