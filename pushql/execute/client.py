"""One-shot REST client for ksqlDB statements.

``RestApiClient`` POSTs a single statement to ``/ksql`` and returns the
decoded JSON response.  It is the explicit way to stop a continuous query on
the server: cancelling a subscription only closes its connection, so callers
that need the server-side query gone call :meth:`terminate_push_query`::

    with RestApiClient(settings) as rest:
        rest.execute_statement("CREATE STREAM movies (title VARCHAR) WITH (...);")
        rest.terminate_push_query(stream.query_id)
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from pushql.compile.type_generator import TypeGenerator
from pushql.errors import NetworkError, StatementError
from pushql.execute.settings import KSQL_V1_JSON, ClientSettings
from pushql.execute.transport import create_http_client
from pushql.schema.statement import CompiledStatement, EndpointType

logger = logging.getLogger(__name__)


class RestApiClient:
    """Synchronous client for the ``/ksql`` and ``/info`` endpoints.

    Args:
        settings: Client settings.
        client: Optional pre-configured :class:`httpx.Client`; not closed by
            :meth:`close` when supplied.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._owns_client = client is None
        self._client = client or create_http_client(self._settings)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute_statement(
        self,
        statement: str | CompiledStatement,
        properties: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """Execute one statement and return the decoded response list.

        Args:
            statement: Statement text (terminated by ``;``) or a compiled
                statement.
            properties: Streams properties; merged over the compiled
                statement's own properties.

        Raises:
            StatementError: If the server rejects the statement.
            NetworkError: If the server cannot be reached.
        """
        if isinstance(statement, str):
            statement = CompiledStatement(text=statement)
        if properties:
            statement = CompiledStatement(
                text=statement.text,
                kind=statement.kind,
                content_encoding=statement.content_encoding,
                properties={**statement.properties, **properties},
            )
        url = self._settings.url(EndpointType.KSQL)
        logger.debug("Executing statement: %s", statement.text)
        try:
            response = self._client.post(
                url,
                content=statement.encode(EndpointType.KSQL),
                headers={"Accept": KSQL_V1_JSON, "Content-Type": KSQL_V1_JSON},
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Could not reach {url}: {exc}") from exc
        body = _json_or_none(response)
        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            raise StatementError(
                message or f"Statement failed with HTTP {response.status_code}.",
                status_code=response.status_code,
                body=body,
            )
        if not isinstance(body, list):
            raise StatementError(
                "Unexpected statement response.", status_code=response.status_code, body=body
            )
        return body

    def terminate_push_query(self, query_id: str) -> list[Any]:
        """Stop the continuous query ``query_id`` on the server."""
        logger.info("Terminating push query %s", query_id)
        return self.execute_statement(f"TERMINATE {query_id};")

    def create_type(self, record_type: type, name: str | None = None) -> list[Any]:
        """Register ``record_type`` as a custom ``STRUCT`` type."""
        return self.execute_statement(TypeGenerator().create_type(record_type, name))

    def list_streams(self) -> list[dict[str, Any]]:
        return self._listing("SHOW STREAMS;", "streams")

    def list_tables(self) -> list[dict[str, Any]]:
        return self._listing("SHOW TABLES;", "tables")

    def list_queries(self) -> list[dict[str, Any]]:
        return self._listing("SHOW QUERIES;", "queries")

    def server_info(self) -> dict[str, Any]:
        """Return the ``KsqlServerInfo`` object from ``/info``."""
        url = f"{self._settings.base_url}/info"
        try:
            response = self._client.get(url, headers={"Accept": KSQL_V1_JSON})
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StatementError(
                f"Server info request failed with HTTP {exc.response.status_code}.",
                status_code=exc.response.status_code,
                body=_json_or_none(exc.response),
            ) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Could not reach {url}: {exc}") from exc
        body = response.json()
        return body.get("KsqlServerInfo", body)

    def _listing(self, text: str, key: str) -> list[dict[str, Any]]:
        body = self.execute_statement(text)
        for entry in body:
            if isinstance(entry, dict) and key in entry:
                return list(entry[key])
        return []

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> RestApiClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
