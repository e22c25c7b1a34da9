"""The QuerySpec: every clause of a streaming query, uncompiled.

``QuerySpec`` is produced by the fluent :class:`~pushql.query.Query` and
consumed by :class:`~pushql.compile.builder.StatementBuilder`.  Predicates
and projections are held as expression trees; compilation happens only in
the builder.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pushql.schema.expressions import Lambda
from pushql.schema.statement import StatementKind
from pushql.schema.tracing import Projection
from pushql.schema.windows import (
    Duration,
    HoppingWindow,
    SessionWindow,
    TumblingWindow,
)


@dataclass(frozen=True)
class SourceRef:
    """A named stream or table.

    Attributes:
        name: Stream or table name.
        record_type: Row record type, if known.
        alias: Optional alias used to qualify columns.
    """

    name: str
    record_type: Any = None
    alias: str | None = None


@dataclass(frozen=True)
class JoinSpec:
    """A single JOIN entry.

    Attributes:
        source: The joined stream or table.
        on: Two-parameter predicate ``(left_row, right_row) -> condition``.
        type: Join type.
        within: Optional ``WITHIN`` duration for stream-stream joins.
    """

    source: SourceRef
    on: Lambda
    type: Literal["INNER", "LEFT", "FULL"] = "INNER"
    within: Duration | None = None


@dataclass(frozen=True)
class QuerySpec:
    """All clauses of one query.

    Attributes:
        source: The FROM source.
        joins: JOIN entries, in order.
        select: Projection; ``None`` selects ``*``.
        where: Row predicate.
        window: Window specification for aggregations.
        group_by: Grouping expressions.
        having: Group predicate.
        limit: Maximum number of rows.
        kind: Push (``EMIT CHANGES``) or pull query.
        properties: Streams properties sent with the statement.
    """

    source: SourceRef
    joins: tuple[JoinSpec, ...] = ()
    select: Projection | None = None
    where: Lambda | None = None
    window: TumblingWindow | HoppingWindow | SessionWindow | None = None
    group_by: Projection | None = None
    having: Lambda | None = None
    limit: int | None = None
    kind: StatementKind = StatementKind.PUSH_QUERY
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def sources(self) -> tuple[SourceRef, ...]:
        """The FROM source followed by every joined source."""
        return (self.source, *(j.source for j in self.joins))
