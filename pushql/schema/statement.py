"""The compiled statement: output of the statement builder.

A :class:`CompiledStatement` is immutable and can be executed any number of
times; every execution opens its own connection.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class StatementKind(str, Enum):
    """Distinguishes one-shot statements from streaming queries."""

    STATEMENT = "STATEMENT"
    PUSH_QUERY = "PUSH_QUERY"
    PULL_QUERY = "PULL_QUERY"


class EndpointType(str, Enum):
    """REST endpoints of the ksqlDB server."""

    KSQL = "/ksql"
    QUERY = "/query"
    QUERY_STREAM = "/query-stream"


@dataclass(frozen=True)
class CompiledStatement:
    """A complete ksqlDB statement ready to be sent.

    Attributes:
        text: Statement text, terminated by ``;``.
        kind: One-shot statement, push query, or pull query.
        content_encoding: Encoding of the request body.
        properties: Streams properties sent with the statement
            (e.g. ``{"auto.offset.reset": "earliest"}``).
    """

    text: str
    kind: StatementKind = StatementKind.STATEMENT
    content_encoding: str = "utf-8"
    properties: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_query(self) -> bool:
        return self.kind is not StatementKind.STATEMENT

    def to_payload(self, endpoint: EndpointType) -> dict[str, Any]:
        """Return the JSON request body for ``endpoint``."""
        if endpoint is EndpointType.QUERY_STREAM:
            return {"sql": self.text, "properties": dict(self.properties)}
        return {"ksql": self.text, "streamsProperties": dict(self.properties)}

    def encode(self, endpoint: EndpointType) -> bytes:
        """Serialize the request body for ``endpoint`` with the content encoding."""
        return json.dumps(self.to_payload(endpoint)).encode(self.content_encoding)
