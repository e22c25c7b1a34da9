"""Incremental JSON parsing of streamed query responses.

Two layers:

- :class:`JsonValueStream` turns an iterable of text chunks into complete
  top-level JSON values, buffering at most one incomplete value.  It never
  holds the whole body in memory.
- :class:`FrameDecoder` classifies each value as a header, a row, a final
  message or an error, for either wire format:

  ``/query`` (v1)::

      [{"header":{"queryId":"q1","schema":"`A` STRING, `B` INTEGER"}},
      {"row":{"columns":["x",1]}},
      {"finalMessage":"Limit Reached"}]

  ``/query-stream`` (delimited)::

      {"queryId":"q1","columnNames":["A","B"],"columnTypes":["STRING","INTEGER"]}
      ["x",1]

Numbers with a fraction or exponent decode as :class:`~decimal.Decimal` so
that ``DECIMAL`` values keep their exact wire representation.
"""
from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

from pushql.errors import ProtocolError, QueryError
from pushql.schema.columns import ColumnSchema
from pushql.schema.statement import EndpointType

_WHITESPACE = " \t\r\n"
_VALUE_STARTS = frozenset("{[\"-0123456789tfnNI")
_DELIMITERS = " \t\r\n,]}"


class JsonValueStream:
    """Yields complete top-level JSON values from text chunks.

    Args:
        chunks: Text chunks in arrival order.
        array_wrapped: ``True`` when the body is one JSON array whose
            elements are the values (``/query``); ``False`` for
            whitespace/newline-delimited values (``/query-stream``).
        max_buffer_size: Largest incomplete value, in characters.
    """

    def __init__(
        self,
        chunks: Iterable[str],
        array_wrapped: bool = True,
        max_buffer_size: int = 16 * 1024 * 1024,
    ) -> None:
        self._chunks = chunks
        self._array_wrapped = array_wrapped
        self._max_buffer_size = max_buffer_size
        self._decoder = json.JSONDecoder(parse_float=Decimal)
        self._opened = not array_wrapped
        self._closed = False
        # Scan state of the incomplete object, array or string at the buffer start.
        self._resume: tuple[int, int, bool, bool] | None = None

    def __iter__(self) -> Iterator[Any]:
        buffer = ""
        for chunk in self._chunks:
            if not chunk:
                continue
            buffer += chunk
            pos = 0
            while True:
                pos = self._skip(buffer, pos)
                if pos >= len(buffer):
                    break
                if buffer[pos] not in _VALUE_STARTS:
                    raise ProtocolError(f"Unexpected character {buffer[pos]!r} in JSON stream.")
                if self._value_end(buffer, pos) < 0:
                    break
                value, end = self._decode(buffer, pos)
                yield value
                pos = end
            buffer = buffer[pos:]
            if len(buffer) > self._max_buffer_size:
                raise ProtocolError(
                    f"Incomplete JSON value exceeds {self._max_buffer_size} characters."
                )

        pos = self._skip(buffer, 0)
        if pos < len(buffer):
            try:
                value, end = self._decoder.raw_decode(buffer, pos)
            except json.JSONDecodeError as exc:
                raise ProtocolError(f"Malformed or truncated JSON value: {exc.msg}.") from exc
            yield value
            if self._skip(buffer, end) < len(buffer):
                raise ProtocolError("Unexpected trailing content after the last JSON value.")
        if self._array_wrapped and self._opened and not self._closed:
            raise ProtocolError("Response array ended without a closing ']'.")

    def _decode(self, buffer: str, pos: int) -> tuple[Any, int]:
        try:
            return self._decoder.raw_decode(buffer, pos)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Malformed JSON value: {exc.msg}.") from exc

    def _value_end(self, buffer: str, start: int) -> int:
        """Returns the end of the value starting at ``start``.

        Objects, arrays and strings end at their closing character, matched
        outside of strings; bare scalars end at the next delimiter, since a
        number may continue in the next chunk.  The value itself is not
        validated here.  Returns ``-1`` while the value is incomplete,
        remembering how far the scan got so that the next chunk resumes there
        instead of rescanning.
        """
        if buffer[start] not in '{["':
            for i in range(start, len(buffer)):
                if buffer[i] in _DELIMITERS:
                    return i
            return -1
        if start == 0 and self._resume is not None:
            offset, depth, in_string, escaped = self._resume
        else:
            offset, depth, in_string, escaped = 0, 0, False, False
        for i in range(start + offset, len(buffer)):
            char = buffer[i]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                    if depth == 0:
                        self._resume = None
                        return i + 1
            elif char == '"':
                in_string = True
            elif char in "{[":
                depth += 1
            elif char in "}]":
                depth -= 1
                if depth == 0:
                    self._resume = None
                    return i + 1
        self._resume = (len(buffer) - start, depth, in_string, escaped)
        return -1

    def _skip(self, buffer: str, pos: int) -> int:
        """Skip whitespace and (for array-wrapped bodies) structural separators."""
        size = len(buffer)
        while pos < size:
            char = buffer[pos]
            if char in _WHITESPACE:
                pos += 1
                continue
            if not self._array_wrapped:
                return pos
            if self._closed:
                raise ProtocolError("Unexpected content after the closing ']'.")
            if not self._opened:
                if char != "[":
                    raise ProtocolError("Response body is not a JSON array.")
                self._opened = True
                pos += 1
                continue
            if char == ",":
                pos += 1
                continue
            if char == "]":
                self._closed = True
                pos += 1
                continue
            return pos
        return pos


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HeaderFrame:
    """The first value of a response: the column schema."""

    schema: ColumnSchema

    @property
    def query_id(self) -> str | None:
        return self.schema.query_id


@dataclass(frozen=True)
class RowFrame:
    """One row record: raw column values in schema order."""

    values: tuple[Any, ...]


@dataclass(frozen=True)
class FinalFrame:
    """End-of-results marker sent for pull queries and reached limits."""

    message: str | None = None


Frame = Union[HeaderFrame, RowFrame, FinalFrame]


class FrameDecoder:
    """Classifies decoded values for one execution.

    The first value must be the header; every later row must have exactly
    as many values as the header has columns.  Server error frames raise
    :class:`QueryError`; anything else out of contract raises
    :class:`ProtocolError`.
    """

    def __init__(self, endpoint: EndpointType = EndpointType.QUERY) -> None:
        self._endpoint = endpoint
        self._schema: ColumnSchema | None = None

    @property
    def schema(self) -> ColumnSchema | None:
        return self._schema

    @property
    def query_id(self) -> str | None:
        return self._schema.query_id if self._schema is not None else None

    def decode(self, value: Any) -> Frame:
        if self._endpoint is EndpointType.QUERY_STREAM:
            frame = self._decode_delimited(value)
        else:
            frame = self._decode_v1(value)
        if isinstance(frame, HeaderFrame):
            self._schema = frame.schema
        return frame

    # ------------------------------------------------------------------
    # /query
    # ------------------------------------------------------------------

    def _decode_v1(self, value: Any) -> Frame:
        if not isinstance(value, dict):
            raise ProtocolError("Expected a JSON object.", payload=value, query_id=self.query_id)
        if "errorMessage" in value:
            raise self._query_error(value["errorMessage"])
        if self._schema is None:
            header = value.get("header")
            if not isinstance(header, dict) or not isinstance(header.get("schema"), str):
                raise ProtocolError(
                    "First value of the response is not a header.", payload=value
                )
            query_id = header.get("queryId")
            return HeaderFrame(ColumnSchema.from_schema_text(header["schema"], query_id))
        if "row" in value:
            row = value["row"]
            columns = row.get("columns") if isinstance(row, dict) else None
            return self._row(columns, value)
        if "finalMessage" in value:
            return FinalFrame(_as_text(value["finalMessage"]))
        if "header" in value:
            raise ProtocolError("Duplicate header.", payload=value, query_id=self.query_id)
        raise ProtocolError("Unrecognised response value.", payload=value, query_id=self.query_id)

    # ------------------------------------------------------------------
    # /query-stream
    # ------------------------------------------------------------------

    def _decode_delimited(self, value: Any) -> Frame:
        if isinstance(value, dict) and str(value.get("@type", "")).endswith("error"):
            raise self._query_error(value)
        if self._schema is None:
            if not isinstance(value, dict) or not isinstance(value.get("columnNames"), list):
                raise ProtocolError(
                    "First value of the response is not a header.", payload=value
                )
            types = value.get("columnTypes")
            if not isinstance(types, list):
                raise ProtocolError("Header has no columnTypes.", payload=value)
            schema = ColumnSchema.from_names_and_types(
                value["columnNames"], types, value.get("queryId")
            )
            return HeaderFrame(schema)
        if isinstance(value, list):
            return self._row(value, value)
        if isinstance(value, dict) and "finalMessage" in value:
            return FinalFrame(_as_text(value["finalMessage"]))
        raise ProtocolError("Row is not a JSON array.", payload=value, query_id=self.query_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _row(self, columns: Any, payload: Any) -> RowFrame:
        assert self._schema is not None
        if not isinstance(columns, list):
            raise ProtocolError("Row is not a JSON array.", payload=payload, query_id=self.query_id)
        if len(columns) != len(self._schema):
            raise ProtocolError(
                f"Row has {len(columns)} values but the schema has {len(self._schema)} columns.",
                payload=payload,
                query_id=self.query_id,
            )
        return RowFrame(tuple(columns))

    def _query_error(self, body: Any) -> QueryError:
        if isinstance(body, dict):
            code = body.get("error_code")
            return QueryError(
                str(body.get("message", "Query failed.")),
                error_code=code if isinstance(code, int) else None,
                query_id=self.query_id,
            )
        return QueryError(str(body), query_id=self.query_id)


def _as_text(value: Any) -> str | None:
    return None if value is None else str(value)
