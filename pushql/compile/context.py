"""Compilation context value object.

Packages the ``(compiler, spec, aliases)`` data clump shared by the
``StatementBuilder`` and every clause-level sub-builder into one object.
"""
from __future__ import annotations

from dataclasses import dataclass

from pushql.compile.expression_builder import ExpressionCompiler
from pushql.schema.query_plan import QuerySpec


@dataclass(frozen=True)
class CompilationContext:
    """Immutable context for a single statement build.

    Attributes:
        compiler: The expression compiler.
        spec: The query being built.
        aliases: Column qualifier per source (FROM first, then joins), or
            ``None`` when columns are unqualified.
    """

    compiler: ExpressionCompiler
    spec: QuerySpec
    aliases: tuple[str, ...] | None = None

    @classmethod
    def for_spec(cls, compiler: ExpressionCompiler, spec: QuerySpec) -> CompilationContext:
        """Resolve source qualifiers once so every clause agrees on them."""
        if not (spec.joins or compiler.options.use_source_alias):
            return cls(compiler=compiler, spec=spec)
        aliases = tuple(src.alias or src.name for src in spec.sources)
        return cls(compiler=compiler, spec=spec, aliases=aliases)
