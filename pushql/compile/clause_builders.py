"""Clause-level ksqlDB builders.

Each class handles exactly one clause and reads everything it needs from
the shared :class:`~pushql.compile.context.CompilationContext`, so every
clause qualifies columns the same way.

Classes
-------
SelectClauseBuilder   - ``SELECT <items | *>``
FromClauseBuilder     - ``FROM <source> [alias]``
JoinClauseBuilder     - ``<type> JOIN <source> [alias] [WITHIN d] ON ...``
WindowClauseBuilder   - ``WINDOW TUMBLING | HOPPING | SESSION (...)``
WhereClauseBuilder    - ``WHERE <predicate>``
GroupByClauseBuilder  - ``GROUP BY <exprs>``
HavingClauseBuilder   - ``HAVING <predicate>``
"""
from __future__ import annotations

from pushql.compile.context import CompilationContext
from pushql.errors import CompileError, InvalidWindowError
from pushql.schema.expressions import Lambda
from pushql.schema.query_plan import JoinSpec, SourceRef
from pushql.schema.windows import Duration, HoppingWindow, SessionWindow, TumblingWindow

_JOIN_KEYWORDS = {
    "INNER": "INNER JOIN",
    "LEFT": "LEFT JOIN",
    "FULL": "FULL OUTER JOIN",
}


def _source_sql(ctx: CompilationContext, index: int, source: SourceRef) -> str:
    ident = ctx.compiler.identifier
    name = ident(source.name)
    if ctx.aliases is None:
        return name
    alias = ctx.aliases[index]
    return name if alias == source.name else f"{name} {ident(alias)}"


def _predicate(ctx: CompilationContext, predicate: Lambda, clause: str) -> str:
    return ctx.compiler.compile(predicate, clause=clause, aliases=ctx.aliases)


class SelectClauseBuilder:
    """Builds the ``SELECT …`` clause."""

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self) -> str:
        projection = self._ctx.spec.select
        if projection is None:
            return "SELECT *"
        items = self._ctx.compiler.compile_projection(
            projection, clause="SELECT", aliases=self._ctx.aliases
        )
        return f"SELECT {', '.join(items)}"


class FromClauseBuilder:
    """Builds the ``FROM <source> [alias]`` fragment."""

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self) -> str:
        source = self._ctx.spec.source
        if not source.name:
            raise CompileError("FROM clause has no source name.", clause="FROM")
        return f"FROM {_source_sql(self._ctx, 0, source)}"


class JoinClauseBuilder:
    """Builds a single JOIN fragment.

    The ``on`` predicate of the n-th join receives row variables for the
    FROM source and the joined source when it takes two parameters;
    otherwise its parameters map positionally onto every source up to and
    including the joined one.
    """

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self, index: int, join: JoinSpec) -> str:
        ctx = self._ctx
        position = index + 1
        keyword = _JOIN_KEYWORDS.get(join.type)
        if keyword is None:
            raise CompileError(f"Unsupported join type '{join.type}'.", clause="JOIN")

        parts = [f"{keyword} {_source_sql(ctx, position, join.source)}"]
        if join.within is not None:
            _require_positive(join.within, "WITHIN", clause="JOIN")
            parts.append(f"WITHIN {join.within.to_ksql()}")

        aliases = ctx.aliases or ()
        if len(join.on.parameters) == 2:
            on_aliases = (aliases[0], aliases[position])
        else:
            on_aliases = aliases[: position + 1]
        condition = ctx.compiler.compile(join.on, clause="JOIN", aliases=on_aliases)
        parts.append(f"ON {condition}")
        return " ".join(parts)


class WindowClauseBuilder:
    """Builds the ``WINDOW …`` clause and validates the window spec."""

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self) -> str:
        window = self._ctx.spec.window
        if isinstance(window, TumblingWindow):
            _require_positive(window.size, "SIZE")
            parts = [f"SIZE {window.size.to_ksql()}"]
            parts += self._lifetime(window.retention, window.grace_period, window.size)
            return f"WINDOW TUMBLING ({', '.join(parts)})"
        if isinstance(window, HoppingWindow):
            _require_positive(window.size, "SIZE")
            _require_positive(window.advance_by, "ADVANCE BY")
            if window.advance_by.milliseconds > window.size.milliseconds:
                raise InvalidWindowError("ADVANCE BY must not be larger than the window SIZE.")
            parts = [f"SIZE {window.size.to_ksql()}", f"ADVANCE BY {window.advance_by.to_ksql()}"]
            parts += self._lifetime(window.retention, window.grace_period, window.size)
            return f"WINDOW HOPPING ({', '.join(parts)})"
        if isinstance(window, SessionWindow):
            _require_positive(window.gap, "gap")
            parts = [window.gap.to_ksql()]
            parts += self._lifetime(window.retention, window.grace_period, window.gap)
            return f"WINDOW SESSION ({', '.join(parts)})"
        raise InvalidWindowError(f"Unsupported window specification: {type(window).__name__}.")

    @staticmethod
    def _lifetime(
        retention: Duration | None,
        grace_period: Duration | None,
        size: Duration,
    ) -> list[str]:
        parts: list[str] = []
        if retention is not None:
            _require_positive(retention, "RETENTION")
            if retention.milliseconds < size.milliseconds:
                raise InvalidWindowError("RETENTION must not be smaller than the window size.")
            parts.append(f"RETENTION {retention.to_ksql()}")
        if grace_period is not None:
            if grace_period.value < 0:
                raise InvalidWindowError("GRACE PERIOD must not be negative.")
            parts.append(f"GRACE PERIOD {grace_period.to_ksql()}")
        return parts


class WhereClauseBuilder:
    """Builds the ``WHERE <predicate>`` clause."""

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self, predicate: Lambda) -> str:
        return f"WHERE {_predicate(self._ctx, predicate, 'WHERE')}"


class GroupByClauseBuilder:
    """Builds the ``GROUP BY <exprs>`` clause; output aliases are dropped."""

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self) -> str:
        projection = self._ctx.spec.group_by
        if projection is None:
            return ""
        exprs = self._ctx.compiler.compile_projection(
            projection, clause="GROUP BY", aliases=self._ctx.aliases, with_aliases=False
        )
        if any(e.endswith("*") for e in exprs):
            raise CompileError("GROUP BY needs column expressions, not a whole row.", clause="GROUP BY")
        return f"GROUP BY {', '.join(exprs)}"


class HavingClauseBuilder:
    """Builds the ``HAVING <predicate>`` clause."""

    def __init__(self, ctx: CompilationContext) -> None:
        self._ctx = ctx

    def build(self, predicate: Lambda) -> str:
        if self._ctx.spec.group_by is None:
            raise CompileError("HAVING requires GROUP BY.", clause="HAVING")
        return f"HAVING {_predicate(self._ctx, predicate, 'HAVING')}"


def _require_positive(duration: Duration, label: str, clause: str = "WINDOW") -> None:
    if duration.value <= 0:
        message = f"{label} must be a positive duration, got {duration.to_ksql()}."
        if clause == "WINDOW":
            raise InvalidWindowError(message)
        raise CompileError(message, clause=clause)
