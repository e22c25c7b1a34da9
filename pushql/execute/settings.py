"""Client settings.

``ClientSettings`` is a frozen pydantic model; one instance is shared by
every execution a client performs::

    settings = ClientSettings(base_url="http://localhost:8088")
    settings = ClientSettings(
        base_url="https://ksql.example.com",
        query_endpoint=EndpointType.QUERY_STREAM,
        basic_auth=("user", "secret"),
    )
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pushql.schema.statement import EndpointType

#: Media type of the v1 REST API (``/ksql`` and ``/query``).
KSQL_V1_JSON = "application/vnd.ksql.v1+json"

#: Media type of the newline-delimited ``/query-stream`` API.
KSQLAPI_DELIMITED = "application/vnd.ksqlapi.delimited.v1"


class ClientSettings(BaseModel):
    """Connection settings for a ksqlDB server.

    Attributes:
        base_url: Server root URL, e.g. ``http://localhost:8088``.
        query_endpoint: Endpoint used for streaming queries.
        connect_timeout: Seconds allowed to establish a connection.
        read_timeout: Seconds allowed between two chunks of a response;
            ``None`` waits forever (push queries can be idle for long).
        headers: Extra request headers.
        basic_auth: Optional ``(user, password)`` pair.
        max_buffer_size: Largest incomplete JSON value (in characters)
            buffered before the stream is rejected.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str = "http://localhost:8088"
    query_endpoint: EndpointType = EndpointType.QUERY
    connect_timeout: float = 10.0
    read_timeout: float | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    basic_auth: tuple[str, str] | None = None
    max_buffer_size: int = Field(default=16 * 1024 * 1024, gt=0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("query_endpoint")
    @classmethod
    def _streaming_endpoint(cls, value: EndpointType) -> EndpointType:
        if value is EndpointType.KSQL:
            raise ValueError("query_endpoint must be '/query' or '/query-stream'")
        return value

    def url(self, endpoint: EndpointType) -> str:
        return f"{self.base_url}{endpoint.value}"

    def accept_header(self, endpoint: EndpointType) -> str:
        """Media type negotiated for ``endpoint``."""
        if endpoint is EndpointType.QUERY_STREAM:
            return KSQLAPI_DELIMITED
        return KSQL_V1_JSON
