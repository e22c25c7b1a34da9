"""Streaming HTTP transport.

The execution client only depends on the :class:`Transport` protocol: open
one streaming request and return a :class:`ResponseReader` that yields text
chunks as they arrive.  :class:`HttpxTransport` implements it on top of a
shared :class:`httpx.Client` (which is safe for concurrent use); every
``open`` call gets its own response.

Transport failures are translated at this boundary:

- ``httpx.HTTPError`` (connect failure, timeout, disconnect) → ``NetworkError``
- an HTTP error status with a ksqlDB error body → ``QueryError``
- any other HTTP error status → ``NetworkError`` carrying the status code
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from typing import Protocol

import httpx

from pushql.errors import NetworkError, QueryError
from pushql.execute.cancellation import CancellationToken
from pushql.execute.settings import ClientSettings

logger = logging.getLogger(__name__)


class ResponseReader(Protocol):
    """Incremental reader over one response body."""

    def iter_text(self) -> Iterator[str]: ...

    def close(self) -> None: ...


class Transport(Protocol):
    """Opens streaming requests; must be safe for concurrent use."""

    def open(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        cancellation: CancellationToken,
    ) -> ResponseReader: ...


def create_http_client(settings: ClientSettings) -> httpx.Client:
    """Create an :class:`httpx.Client` configured from ``settings``."""
    return httpx.Client(
        timeout=httpx.Timeout(settings.connect_timeout, read=settings.read_timeout),
        headers=settings.headers,
        auth=settings.basic_auth,
    )


def error_from_response(status_code: int, payload: bytes) -> QueryError | NetworkError:
    """Translate an HTTP error response into a stream error."""
    try:
        body = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        body = None
    if isinstance(body, dict) and "message" in body:
        return QueryError(
            str(body["message"]),
            error_code=body.get("error_code"),
            status_code=status_code,
        )
    return NetworkError(f"Server responded with HTTP {status_code}.", status_code=status_code)


class HttpxResponseReader:
    """Reads a streamed :class:`httpx.Response` as text chunks."""

    def __init__(self, response: httpx.Response, encoding: str = "utf-8") -> None:
        self._response = response
        self._encoding = encoding
        self._closed = False

    def iter_text(self) -> Iterator[str]:
        if self._response.encoding is None:
            self._response.encoding = self._encoding
        try:
            yield from self._response.iter_text()
        except (httpx.HTTPError, httpx.StreamError) as exc:
            raise NetworkError(f"Stream interrupted: {exc}") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._response.close()
        except (httpx.HTTPError, OSError) as exc:
            logger.debug("Error while closing response: %s", exc)
        logger.debug("Closed streaming response from %s", self._response.url)


class HttpxTransport:
    """:class:`Transport` backed by a shared :class:`httpx.Client`.

    Args:
        settings: Client settings used to build the default client.
        client: Optional pre-configured client (e.g. one mounted with a mock
            transport in tests).  A client passed in is not closed by
            :meth:`close`.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._owns_client = client is None
        self._client = client or create_http_client(self._settings)

    def open(
        self,
        url: str,
        body: bytes,
        headers: Mapping[str, str],
        cancellation: CancellationToken,
    ) -> HttpxResponseReader:
        logger.debug("Opening streaming request to %s", url)
        request = self._client.build_request("POST", url, content=body, headers=dict(headers))
        try:
            response = self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise NetworkError(f"Could not connect to {url}: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.read()
            except httpx.HTTPError:
                payload = b""
            finally:
                response.close()
            raise error_from_response(response.status_code, payload)

        reader = HttpxResponseReader(response)
        cancellation.register(reader.close)
        return reader

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
