"""Core QuerySpec → ksqlDB statement compilation.

``StatementBuilder`` is the top-level orchestrator.  It creates one
:class:`~pushql.compile.context.CompilationContext` per ``build()`` call,
wires the clause-level sub-builders to it, and assembles their output in
ksqlDB grammar order::

    SELECT …
    FROM source [alias]
    [<type> JOIN …]
    [WINDOW …]
    [WHERE …]
    [GROUP BY …]
    [HAVING …]
    [EMIT CHANGES]          (push queries only)
    [LIMIT n];

Building never performs I/O; the result is an immutable
:class:`~pushql.schema.statement.CompiledStatement`.

Sub-builder hierarchy
---------------------
StatementBuilder
  ├── ExpressionCompiler    (expression_builder.py)
  ├── SelectClauseBuilder   (clause_builders.py)
  ├── FromClauseBuilder     (clause_builders.py)
  ├── JoinClauseBuilder     (clause_builders.py)
  ├── WindowClauseBuilder   (clause_builders.py)
  ├── WhereClauseBuilder    (clause_builders.py)
  ├── GroupByClauseBuilder  (clause_builders.py)
  └── HavingClauseBuilder   (clause_builders.py)
"""

from __future__ import annotations

from pushql.compile.clause_builders import (
    FromClauseBuilder,
    GroupByClauseBuilder,
    HavingClauseBuilder,
    JoinClauseBuilder,
    SelectClauseBuilder,
    WhereClauseBuilder,
    WindowClauseBuilder,
)
from pushql.compile.context import CompilationContext
from pushql.compile.expression_builder import ExpressionCompiler
from pushql.compile.options import CompileOptions
from pushql.errors import CompileError
from pushql.schema.query_plan import QuerySpec
from pushql.schema.statement import CompiledStatement, StatementKind


class StatementBuilder:
    """Compiles a :class:`QuerySpec` to a complete ksqlDB statement.

    Args:
        compiler: Expression compiler; defaults to one built from ``options``.
        options: Compile options, used only when ``compiler`` is omitted.
    """

    def __init__(
        self,
        compiler: ExpressionCompiler | None = None,
        options: CompileOptions | None = None,
    ) -> None:
        self._compiler = compiler or ExpressionCompiler(options)

    @property
    def compiler(self) -> ExpressionCompiler:
        return self._compiler

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, spec: QuerySpec) -> CompiledStatement:
        """Compile ``spec`` to statement text.

        Args:
            spec: The query to compile.

        Returns:
            A :class:`CompiledStatement` whose text ends with ``;`` and
            whose kind and properties come from ``spec``.

        Raises:
            CompileError: If any clause cannot be compiled.
        """
        if spec.kind is StatementKind.STATEMENT:
            raise CompileError("A query spec must be a push or a pull query.")
        ctx = CompilationContext.for_spec(self._compiler, spec)
        text = self._build_query(ctx)
        return CompiledStatement(
            text=f"{text};",
            kind=spec.kind,
            properties=dict(spec.properties),
        )

    # ------------------------------------------------------------------
    # Clause assembly
    # ------------------------------------------------------------------

    def _build_query(self, ctx: CompilationContext) -> str:
        spec = ctx.spec
        parts: list[str] = []

        parts.append(SelectClauseBuilder(ctx).build())
        parts.append(FromClauseBuilder(ctx).build())

        join_builder = JoinClauseBuilder(ctx)
        for index, join in enumerate(spec.joins):
            parts.append(join_builder.build(index, join))

        if spec.window is not None:
            parts.append(WindowClauseBuilder(ctx).build())

        if spec.where is not None:
            parts.append(WhereClauseBuilder(ctx).build(spec.where))

        if spec.group_by is not None:
            parts.append(GroupByClauseBuilder(ctx).build())

        if spec.having is not None:
            parts.append(HavingClauseBuilder(ctx).build(spec.having))

        if spec.kind is StatementKind.PUSH_QUERY:
            parts.append("EMIT CHANGES")

        if spec.limit is not None:
            if spec.limit <= 0:
                raise CompileError(f"LIMIT must be positive, got {spec.limit}.", clause="LIMIT")
            parts.append(f"LIMIT {spec.limit}")

        return "\n".join(parts)
