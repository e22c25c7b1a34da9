"""Fluent, immutable query construction.

``Query`` collects Python callables for each clause and traces them into a
:class:`~pushql.schema.query_plan.QuerySpec` on demand.  Every method
returns a new ``Query``; the receiver is never modified, so a base query
can be shared and refined::

    movies = Query("movies", Movie)
    recent = movies.where(lambda m: m.year > 2000)
    titles = recent.select(lambda m: {"title": m.title}).limit(10)
    statement = titles.build()

Callables take one row variable per source: the FROM source first, then
each joined source in join order.
"""
from __future__ import annotations

import dataclasses
import inspect
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Literal

from pushql.compile.builder import StatementBuilder
from pushql.compile.options import CompileOptions
from pushql.schema.query_plan import JoinSpec, QuerySpec, SourceRef
from pushql.schema.statement import CompiledStatement, StatementKind
from pushql.schema.tracing import trace, trace_all, trace_projection
from pushql.schema.windows import Duration, HoppingWindow, SessionWindow, TumblingWindow

Window = TumblingWindow | HoppingWindow | SessionWindow


@dataclass(frozen=True)
class _PendingJoin:
    source: SourceRef
    on: Callable[..., Any]
    type: Literal["INNER", "LEFT", "FULL"]
    within: Duration | None


@dataclass(frozen=True)
class Query:
    """An immutable query over a named stream or table.

    Args:
        source: Stream or table name.
        record_type: Row record type (pydantic model or dataclass).
        alias: Optional alias used to qualify columns.
    """

    source: str
    record_type: Any = None
    alias: str | None = None
    _joins: tuple[_PendingJoin, ...] = field(default=(), repr=False)
    _where: tuple[Callable[..., Any], ...] = field(default=(), repr=False)
    _select: Callable[..., Any] | None = field(default=None, repr=False)
    _group_by: Callable[..., Any] | None = field(default=None, repr=False)
    _having: tuple[Callable[..., Any], ...] = field(default=(), repr=False)
    _window: Window | None = field(default=None, repr=False)
    _limit: int | None = field(default=None, repr=False)
    _kind: StatementKind = field(default=StatementKind.PUSH_QUERY, repr=False)
    _properties: tuple[tuple[str, Any], ...] = field(default=(), repr=False)

    # ------------------------------------------------------------------
    # Clauses
    # ------------------------------------------------------------------

    def where(self, predicate: Callable[..., Any]) -> Query:
        """Add a row filter; repeated calls are combined with AND."""
        return dataclasses.replace(self, _where=self._where + (predicate,))

    def select(self, projection: Callable[..., Any]) -> Query:
        """Set the projection (single expression, tuple, or alias dict)."""
        return dataclasses.replace(self, _select=projection)

    def join(
        self,
        source: str,
        record_type: Any,
        on: Callable[..., Any],
        type: Literal["INNER", "LEFT", "FULL"] = "INNER",
        alias: str | None = None,
        within: Duration | timedelta | None = None,
    ) -> Query:
        """Join another stream or table.

        Args:
            source: Joined stream or table name.
            record_type: Row record type of the joined source.
            on: Join condition over ``(left_row, right_row)``.
            type: ``INNER``, ``LEFT`` or ``FULL``.
            alias: Optional alias of the joined source.
            within: Time bound for stream-stream joins.
        """
        if isinstance(within, timedelta):
            within = Duration.of(within)
        pending = _PendingJoin(SourceRef(source, record_type, alias), on, type, within)
        return dataclasses.replace(self, _joins=self._joins + (pending,))

    def window(self, window: Window) -> Query:
        return dataclasses.replace(self, _window=window)

    def group_by(self, keys: Callable[..., Any]) -> Query:
        return dataclasses.replace(self, _group_by=keys)

    def having(self, predicate: Callable[..., Any]) -> Query:
        """Add a group filter; repeated calls are combined with AND."""
        return dataclasses.replace(self, _having=self._having + (predicate,))

    def limit(self, count: int) -> Query:
        return dataclasses.replace(self, _limit=count)

    def with_property(self, name: str, value: Any) -> Query:
        """Attach a streams property such as ``auto.offset.reset``."""
        properties = tuple((k, v) for k, v in self._properties if k != name)
        return dataclasses.replace(self, _properties=properties + ((name, value),))

    def push(self) -> Query:
        """Make this a continuous query (``EMIT CHANGES``); the default."""
        return dataclasses.replace(self, _kind=StatementKind.PUSH_QUERY)

    def pull(self) -> Query:
        """Make this a point-in-time query."""
        return dataclasses.replace(self, _kind=StatementKind.PULL_QUERY)

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    @property
    def has_projection(self) -> bool:
        """``True`` when rows no longer match the source record type."""
        return self._select is not None or self._group_by is not None or bool(self._joins)

    @property
    def row_types(self) -> tuple[Any, ...]:
        """Record type per source, FROM first."""
        return (self.record_type, *(j.source.record_type for j in self._joins))

    def to_spec(self) -> QuerySpec:
        """Trace every clause callable into a :class:`QuerySpec`.

        Raises:
            CompileError: If a callable cannot be traced.
        """
        types = self.row_types
        joins = tuple(self._trace_join(i, j) for i, j in enumerate(self._joins))
        return QuerySpec(
            source=SourceRef(self.source, self.record_type, self.alias),
            joins=joins,
            select=trace_projection(self._select, *types) if self._select else None,
            where=trace_all(self._where, *types) if self._where else None,
            window=self._window,
            group_by=trace_projection(self._group_by, *types) if self._group_by else None,
            having=trace_all(self._having, *types) if self._having else None,
            limit=self._limit,
            kind=self._kind,
            properties=dict(self._properties),
        )

    def build(self, options: CompileOptions | None = None) -> CompiledStatement:
        """Compile to a :class:`CompiledStatement` without any I/O."""
        return StatementBuilder(options=options).build(self.to_spec())

    def _trace_join(self, index: int, pending: _PendingJoin) -> JoinSpec:
        types = self.row_types[: index + 2]
        if len(inspect.signature(pending.on).parameters) == 2:
            types = (self.record_type, pending.source.record_type)
        return JoinSpec(
            source=pending.source,
            on=trace(pending.on, *types),
            type=pending.type,
            within=pending.within,
        )
