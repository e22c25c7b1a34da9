"""Streaming execution of compiled queries.

``StreamingExecutionClient.execute`` opens one streaming request per call
and returns a :class:`RowStream`: an iterator of materialized records that
owns the connection.  Iteration reads the response incrementally; the
header is consumed before the first row and binds the execution's
:class:`~pushql.schema.columns.ColumnSchema` and
:class:`~pushql.execute.materializer.RowMaterializer`.

Cancellation is checked at every row boundary.  Once the token is set the
stream stops: rows already parsed but not yet returned are discarded, and an
I/O error caused by closing the connection ends iteration instead of
surfacing as a fault.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from pushql.errors import CompileError, ConversionError, ProtocolError, StreamError
from pushql.execute.cancellation import CancellationToken
from pushql.execute.materializer import RowMaterializer
from pushql.execute.parser import FinalFrame, FrameDecoder, HeaderFrame, JsonValueStream
from pushql.execute.settings import ClientSettings
from pushql.execute.transport import HttpxTransport, ResponseReader, Transport
from pushql.schema.columns import ColumnSchema
from pushql.schema.statement import CompiledStatement, EndpointType

logger = logging.getLogger(__name__)


class RowStream:
    """Iterator of materialized rows over one open response.

    Args:
        reader: The open response.
        endpoint: Endpoint the request was sent to (selects the wire format).
        target: Record type, ``dict`` or ``None``.
        cancellation: Token observed at each row boundary.
        max_buffer_size: Largest incomplete JSON value, in characters.
    """

    def __init__(
        self,
        reader: ResponseReader,
        endpoint: EndpointType,
        target: Any,
        cancellation: CancellationToken,
        max_buffer_size: int,
    ) -> None:
        self._reader = reader
        self._target = target
        self._cancellation = cancellation
        self._decoder = FrameDecoder(endpoint)
        self._values = iter(
            JsonValueStream(
                reader.iter_text(),
                array_wrapped=endpoint is not EndpointType.QUERY_STREAM,
                max_buffer_size=max_buffer_size,
            )
        )
        self._materializer: RowMaterializer | None = None
        self._finished = False
        self._final_message: str | None = None
        self._fault: StreamError | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def schema(self) -> ColumnSchema | None:
        """The column schema, once the header has been read."""
        return self._decoder.schema

    @property
    def query_id(self) -> str | None:
        return self._decoder.query_id

    @property
    def cancelled(self) -> bool:
        return self._cancellation.cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def final_message(self) -> str | None:
        """The server's final message (pull queries and reached limits)."""
        return self._final_message

    @property
    def fault(self) -> StreamError | None:
        """The error this stream raised, if it failed on its own.

        Errors suppressed because the token was already cancelled are not
        recorded, so a set ``fault`` is a failure and never a cancellation.
        """
        return self._fault

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def read_header(self) -> ColumnSchema:
        """Read up to and including the header; returns the schema.

        Raises:
            ProtocolError: If the stream ends before a header arrives.
        """
        while self._decoder.schema is None:
            if self._next_frame() is None:
                raise ProtocolError("Stream closed before a header was received.")
        return self._decoder.schema

    def __iter__(self) -> Iterator[Any]:
        return self

    def __next__(self) -> Any:
        if self._finished or self._stop_if_cancelled():
            raise StopIteration
        while True:
            frame = self._next_frame()
            if frame is None or isinstance(frame, FinalFrame):
                self._finish()
                raise StopIteration
            if isinstance(frame, HeaderFrame):
                continue
            if self._stop_if_cancelled():
                raise StopIteration
            assert self._materializer is not None
            try:
                return self._materializer.materialize(frame.values)
            except (ProtocolError, ConversionError) as exc:
                logger.warning("Row rejected for query %s: %s", self.query_id, exc)
                self._fail(exc)
                raise

    def _next_frame(self) -> Any:
        """Next decoded frame, or ``None`` at end of stream or after cancel."""
        try:
            value = next(self._values)
        except StopIteration:
            if self._decoder.schema is None and not self._cancellation.cancelled:
                exc = ProtocolError("Stream ended before a header was received.")
                self._fail(exc)
                raise exc from None
            return None
        except StreamError as exc:
            if self._cancellation.cancelled:
                self.close()
                logger.debug("Stream error after cancellation ignored: %s", exc)
                return None
            if isinstance(exc, ProtocolError):
                logger.warning("Malformed response for query %s: %s", self.query_id, exc)
            self._fail(exc)
            raise

        try:
            frame = self._decoder.decode(value)
        except StreamError as exc:
            if isinstance(exc, ProtocolError):
                logger.warning("Malformed response for query %s: %s", self.query_id, exc)
            self._fail(exc)
            raise

        if isinstance(frame, HeaderFrame):
            logger.debug(
                "Header received for query %s: %s", frame.query_id, ", ".join(frame.schema.names)
            )
            try:
                self._materializer = RowMaterializer(frame.schema, self._target)
            except ConversionError as exc:
                logger.warning("Result schema does not fit the target: %s", exc)
                self._fail(exc)
                raise
        elif isinstance(frame, FinalFrame):
            self._final_message = frame.message
        return frame

    def _fail(self, exc: StreamError) -> None:
        # Recorded before closing: closing may itself cancel the token.
        exc.query_id = exc.query_id or self.query_id
        self._fault = exc
        self.close()

    def _stop_if_cancelled(self) -> bool:
        if not self._cancellation.cancelled:
            return False
        self.close()
        return True

    def _finish(self) -> None:
        self._finished = True
        self.close()

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the connection; further iteration stops."""
        self._finished = True
        self._reader.close()

    def __enter__(self) -> RowStream:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class StreamingExecutionClient:
    """Executes compiled queries over a streaming transport.

    Args:
        settings: Client settings (base URL, endpoint, buffer limit).
        transport: Transport to open requests with; defaults to an
            :class:`HttpxTransport` built from ``settings``.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._owns_transport = transport is None
        self._transport = transport or HttpxTransport(self._settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def execute(
        self,
        statement: CompiledStatement,
        target: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> RowStream:
        """Open one streaming request for ``statement``.

        Args:
            statement: A compiled push or pull query.
            target: Record type, ``dict`` or ``None`` for the rows.
            cancellation: Token that closes the connection when set.

        Returns:
            A :class:`RowStream` owning the connection.

        Raises:
            CompileError: If ``statement`` is not a query.
            NetworkError: If the connection cannot be opened.
            QueryError: If the server rejects the query.
        """
        if not statement.is_query:
            raise CompileError("Only push and pull queries can be streamed.")
        cancellation = cancellation or CancellationToken()
        endpoint = self._settings.query_endpoint
        headers = {
            "Accept": self._settings.accept_header(endpoint),
            "Content-Type": f"application/json; charset={statement.content_encoding}",
        }
        reader = self._transport.open(
            self._settings.url(endpoint),
            statement.encode(endpoint),
            headers,
            cancellation,
        )
        return RowStream(
            reader,
            endpoint,
            target,
            cancellation,
            self._settings.max_buffer_size,
        )

    def close(self) -> None:
        if self._owns_transport:
            close = getattr(self._transport, "close", None)
            if close is not None:
                close()
