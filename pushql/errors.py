"""Custom exception hierarchy for pushQL.

All public errors inherit from :class:`PushQLError` so callers can catch the
base class for any pushQL-specific failure.

Compile-time errors (:class:`CompileError` and subclasses) are raised
synchronously before any network activity.  Run-time errors
(:class:`StreamError` and subclasses) terminate a single execution and are
reported to subscribers through the terminal ``on_error`` callback.
"""
from __future__ import annotations

from typing import Any


class PushQLError(Exception):
    """Base exception for all pushQL errors."""


# ---------------------------------------------------------------------------
# Compile-time errors
# ---------------------------------------------------------------------------


class CompileError(PushQLError):
    """Raised when a query cannot be compiled to ksqlDB text.

    Args:
        message: Human-readable description.
        clause: The statement clause being compiled when the error occurred.
    """

    def __init__(self, message: str, clause: str | None = None) -> None:
        super().__init__(message)
        self.clause = clause


class UnsupportedExpressionError(CompileError):
    """Raised for an expression node kind outside the supported set."""

    def __init__(self, kind: str, clause: str | None = None) -> None:
        super().__init__(f"Unsupported expression node kind: '{kind}'.", clause=clause)
        self.kind = kind


class InvalidMemberError(CompileError):
    """Raised when a member has no resolvable column mapping."""

    def __init__(self, member: str, record_type: type | None = None) -> None:
        owner = record_type.__name__ if record_type is not None else "<unknown>"
        super().__init__(f"Member '{member}' has no column mapping on '{owner}'.")
        self.member = member
        self.record_type = record_type


class UnsupportedTypeError(CompileError):
    """Raised when a Python type has no ksqlDB column type."""

    def __init__(self, python_type: Any, reason: str | None = None) -> None:
        name = getattr(python_type, "__name__", repr(python_type))
        message = f"Type '{name}' has no ksqlDB column type mapping."
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)
        self.python_type = python_type


class InvalidWindowError(CompileError):
    """Raised when a window specification is inconsistent."""

    def __init__(self, message: str) -> None:
        super().__init__(message, clause="WINDOW")


# ---------------------------------------------------------------------------
# Run-time streaming errors
# ---------------------------------------------------------------------------


class StreamError(PushQLError):
    """Base class for errors that terminate a single execution.

    Args:
        message: Human-readable description.
        query_id: Server-assigned query id, when the header was received.
    """

    def __init__(self, message: str, query_id: str | None = None) -> None:
        super().__init__(message)
        self.query_id = query_id


class ProtocolError(StreamError):
    """Raised when the response body does not follow the wire contract.

    Args:
        message: Human-readable description.
        payload: The offending decoded value, if any.
    """

    def __init__(self, message: str, payload: Any = None, query_id: str | None = None) -> None:
        super().__init__(message, query_id=query_id)
        self.payload = payload


class ConversionError(StreamError):
    """Raised when a row value cannot be converted for its target field."""


class ValueConversionError(ConversionError):
    """Raised when a column value cannot be mapped into a field without loss.

    Args:
        column: Column name the value came from.
        value: The raw value.
        target: The target Python type (or description).
        reason: Optional extra explanation.
    """

    def __init__(
        self,
        column: str,
        value: Any,
        target: Any,
        reason: str | None = None,
    ) -> None:
        target_name = getattr(target, "__name__", repr(target))
        message = f"Cannot convert {value!r} in column '{column}' to {target_name}."
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)
        self.column = column
        self.value = value
        self.target = target


class NetworkError(StreamError):
    """Raised on connect failure, mid-stream disconnect, or timeout."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        query_id: str | None = None,
    ) -> None:
        super().__init__(message, query_id=query_id)
        self.status_code = status_code


class QueryError(StreamError):
    """Raised when the server reports an error for a running query.

    Args:
        message: Server-provided error message.
        error_code: Server-provided error code, if any.
        status_code: HTTP status code when the error came from the response
            status rather than from a frame inside the body.
    """

    def __init__(
        self,
        message: str,
        error_code: int | None = None,
        status_code: int | None = None,
        query_id: str | None = None,
    ) -> None:
        super().__init__(message, query_id=query_id)
        self.error_code = error_code
        self.status_code = status_code


# ---------------------------------------------------------------------------
# One-shot statement errors
# ---------------------------------------------------------------------------


class StatementError(PushQLError):
    """Raised when a one-shot statement is rejected by the server.

    Args:
        message: Human-readable description.
        status_code: HTTP status code.
        body: Decoded response body, if it was JSON.
    """

    def __init__(self, message: str, status_code: int, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def to_error_response(self) -> dict[str, Any]:
        """Returns a structured description of the failure."""
        return {
            "status_code": self.status_code,
            "message": str(self),
            "body": self.body,
        }
