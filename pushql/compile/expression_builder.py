"""Expression tree → ksqlDB text.

``ExpressionCompiler`` walks a tree of :mod:`~pushql.schema.expressions`
nodes, dispatching on the node class.  Each of the seven node kinds has
exactly one emission rule; any other object in the tree raises
:class:`~pushql.errors.UnsupportedExpressionError`.

Compilation state
-----------------
The compiler itself is immutable (options, translator, dispatch table) and
can be shared between threads.  Everything that changes during a walk (the
row parameters and their qualifiers, the set of lambda variables already
declared) lives in a :class:`CompileState` created per :meth:`compile`
call and threaded explicitly through the recursion.

Row parameters
--------------
The parameters of the *root* lambda stand for source rows: ``m.title``
compiles to the column ``TITLE`` (or ``M.TITLE`` when source aliases are in
play).  Lambdas nested inside function arguments compile to ksqlDB lambda
syntax (``X => X + 1``), and members of their variables, like members of
struct-typed columns, use ``->`` dereferencing.
"""
from __future__ import annotations

import datetime
import enum
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Sequence

from pushql.compile.functions import Fragment, FunctionRegistry, RenderedCall
from pushql.compile.options import CompileOptions, IdentifierFormatter
from pushql.compile.type_translator import TypeTranslator
from pushql.errors import CompileError, InvalidMemberError, UnsupportedExpressionError, UnsupportedTypeError
from pushql.schema.expressions import (
    BINARY_PRECEDENCE,
    NON_ASSOCIATIVE_OPS,
    PREC_ATOM,
    PREC_COMPARISON,
    PREC_UNARY,
    UNARY_PRECEDENCE,
    BinaryOp,
    BinaryOperator,
    Constant,
    Expression,
    Lambda,
    MemberAccess,
    MethodCall,
    Parameter,
    UnaryOp,
    UnaryOperator,
    node_kind,
)
from pushql.schema.records import describe, is_record_type
from pushql.schema.tracing import Projection

_PREC_LAMBDA = 0

_BINARY_TEXT: dict[BinaryOperator, str] = {
    BinaryOperator.AND: "AND",
    BinaryOperator.OR: "OR",
    BinaryOperator.EQ: "=",
    BinaryOperator.NE: "!=",
    BinaryOperator.GT: ">",
    BinaryOperator.GTE: ">=",
    BinaryOperator.LT: "<",
    BinaryOperator.LTE: "<=",
    BinaryOperator.ADD: "+",
    BinaryOperator.SUB: "-",
    BinaryOperator.MUL: "*",
    BinaryOperator.DIV: "/",
    BinaryOperator.MOD: "%",
}


# ---------------------------------------------------------------------------
# Per-call state
# ---------------------------------------------------------------------------


@dataclass
class CompileState:
    """Mutable state confined to one compile call.

    Attributes:
        sources: Root row parameters mapped to their column qualifier
            (``None`` when columns are unqualified).
        declared: Lambda variables already declared in the current scope.
    """

    sources: dict[Parameter, str | None] = field(default_factory=dict)
    declared: set[Parameter] = field(default_factory=set)


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------


class ExpressionCompiler:
    """Compiles expression trees to ksqlDB fragments.

    Args:
        options: Compile options (identifier casing/escaping, aliasing,
            literal formats, function overrides).
        translator: Type translator; defaults to one using ``options``.
    """

    def __init__(
        self,
        options: CompileOptions | None = None,
        translator: TypeTranslator | None = None,
    ) -> None:
        self._options = options or CompileOptions()
        self._ident = IdentifierFormatter(self._options)
        self._translator = translator or TypeTranslator(self._options)
        self._visitors: dict[type, Callable[[Any, CompileState], Fragment]] = {
            Lambda: self._visit_lambda,
            Parameter: self._visit_parameter,
            MemberAccess: self._visit_member,
            MethodCall: self._visit_call,
            BinaryOp: self._visit_binary,
            UnaryOp: self._visit_unary,
            Constant: self._visit_constant,
        }

    @property
    def options(self) -> CompileOptions:
        return self._options

    @property
    def translator(self) -> TypeTranslator:
        return self._translator

    def identifier(self, name: str) -> str:
        """Format ``name`` according to the identifier options."""
        return self._ident.format(name)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compile(
        self,
        expression: Expression,
        *,
        clause: str | None = None,
        aliases: Sequence[str | None] | None = None,
    ) -> str:
        """Compile ``expression`` to ksqlDB text.

        Args:
            expression: A root lambda (its parameters are source rows) or
                any other node.
            clause: Clause name recorded on raised errors.
            aliases: Source alias per root-lambda parameter, positionally.
                Supplying aliases turns qualification on for this call.

        Raises:
            UnsupportedExpressionError: For a node outside the supported set.
            InvalidMemberError: For a member with no column mapping.
            CompileError: For any other compile failure.
        """
        if isinstance(expression, Lambda):
            state = self._new_state(expression.parameters, aliases)
            body = expression.body
        else:
            state = CompileState()
            body = expression
        return self._run(lambda: self._visit(body, state).text, clause)

    def compile_projection(
        self,
        projection: Projection,
        *,
        clause: str = "SELECT",
        aliases: Sequence[str | None] | None = None,
        with_aliases: bool = True,
    ) -> list[str]:
        """Compile each projection item; a bare row parameter becomes ``*``.

        Args:
            projection: The traced projection.
            clause: Clause name recorded on raised errors.
            aliases: Source alias per parameter, positionally.
            with_aliases: Emit ``AS alias`` for named items.
        """
        state = self._new_state(projection.parameters, aliases)

        def build() -> list[str]:
            out: list[str] = []
            for item in projection.items:
                if isinstance(item.expr, Parameter) and item.expr in state.sources:
                    qualifier = state.sources[item.expr]
                    out.append(f"{qualifier}.*" if qualifier else "*")
                    continue
                text = self._visit(item.expr, state).text
                if with_aliases and item.alias:
                    text = f"{text} AS {self.identifier(item.alias)}"
                out.append(text)
            return out

        return self._run(build, clause)

    def literal(self, value: Any) -> str:
        """Render a Python value as a ksqlDB literal."""
        return self._literal(value).text

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_state(
        self,
        parameters: Sequence[Parameter],
        aliases: Sequence[str | None] | None,
    ) -> CompileState:
        qualify = self._options.use_source_alias or aliases is not None
        sources: dict[Parameter, str | None] = {}
        for i, param in enumerate(parameters):
            if not qualify:
                sources[param] = None
                continue
            alias = aliases[i] if aliases is not None and i < len(aliases) else None
            alias = alias or self._options.source_aliases.get(param.name, param.name)
            sources[param] = self.identifier(alias)
        return CompileState(sources=sources)

    @staticmethod
    def _run(fn: Callable[[], Any], clause: str | None) -> Any:
        try:
            return fn()
        except CompileError as exc:
            if exc.clause is None:
                exc.clause = clause
            raise

    def _visit(self, node: Any, state: CompileState) -> Fragment:
        visitor = self._visitors.get(type(node))
        if visitor is None:
            raise UnsupportedExpressionError(node_kind(node))
        return visitor(node, state)

    def _quote(self, text: str) -> str:
        escaped = text.replace("'", "''")
        return f"'{escaped}'"

    def _static_type(self, node: Expression, state: CompileState) -> Any:
        """Best-effort record type of ``node`` (``None`` when unknown)."""
        if isinstance(node, Parameter):
            return node.type
        if isinstance(node, MemberAccess):
            owner = self._static_type(node.target, state)
            if is_record_type(owner):
                descriptor = describe(owner).get_field(node.member)
                if descriptor is not None:
                    return descriptor.base_type
        return None

    def _column_name(self, owner: Any, member: str) -> str:
        if owner is None:
            return member
        if not is_record_type(owner):
            raise InvalidMemberError(member, owner if isinstance(owner, type) else None)
        descriptor = describe(owner).get_field(member)
        if descriptor is None:
            raise InvalidMemberError(member, owner)
        return descriptor.column

    # ------------------------------------------------------------------
    # Node visitors
    # ------------------------------------------------------------------

    def _visit_lambda(self, node: Lambda, state: CompileState) -> Fragment:
        if not node.parameters:
            raise CompileError("Nested lambdas need at least one parameter.")
        introduced = [p for p in node.parameters if p not in state.declared]
        names = [self.identifier(p.name) for p in node.parameters]
        declaration = names[0] if len(names) == 1 else f"({', '.join(names)})"
        state.declared.update(introduced)
        try:
            body = self._visit(node.body, state)
        finally:
            state.declared.difference_update(introduced)
        return Fragment(f"{declaration} => {body.text}", _PREC_LAMBDA)

    def _visit_parameter(self, node: Parameter, state: CompileState) -> Fragment:
        if node in state.declared:
            return Fragment(self.identifier(node.name))
        if node in state.sources:
            raise CompileError(
                f"Row variable '{node.name}' cannot be used as a value; access one of its members."
            )
        raise CompileError(f"Variable '{node.name}' is not bound by an enclosing lambda.")

    def _visit_member(self, node: MemberAccess, state: CompileState) -> Fragment:
        target = node.target
        if isinstance(target, Parameter) and target in state.sources:
            column = self.identifier(self._column_name(target.type, node.member))
            qualifier = state.sources[target]
            return Fragment(f"{qualifier}.{column}" if qualifier else column)

        owner = self._static_type(target, state)
        column = self.identifier(self._column_name(owner, node.member))
        inner = self._visit(target, state)
        inner_text = inner.text if inner.precedence >= PREC_ATOM else f"({inner.text})"
        return Fragment(f"{inner_text}->{column}")

    def _visit_call(self, node: MethodCall, state: CompileState) -> Fragment:
        target = self._visit(node.target, state) if node.target is not None else None
        args = tuple(self._visit(a, state) for a in node.args)
        call = RenderedCall(
            method=node.method,
            target=target,
            args=args,
            raw_args=node.args,
            quote=self._quote,
        )
        return FunctionRegistry.render(call, self._options.function_overrides)

    def _visit_binary(self, node: BinaryOp, state: CompileState) -> Fragment:
        if node.op in (BinaryOperator.EQ, BinaryOperator.NE):
            null_check = self._null_check(node, state)
            if null_check is not None:
                return null_check

        prec = BINARY_PRECEDENCE[node.op]
        left = self._visit(node.left, state)
        right = self._visit(node.right, state)
        left_text = left.text
        if left.precedence < prec or (left.precedence == prec == PREC_COMPARISON):
            left_text = f"({left_text})"
        right_text = right.text
        if right.precedence < prec or (
            right.precedence == prec and node.op in NON_ASSOCIATIVE_OPS
        ):
            right_text = f"({right_text})"
        return Fragment(f"{left_text} {_BINARY_TEXT[node.op]} {right_text}", prec)

    def _null_check(self, node: BinaryOp, state: CompileState) -> Fragment | None:
        if isinstance(node.right, Constant) and node.right.value is None:
            operand = node.left
        elif isinstance(node.left, Constant) and node.left.value is None:
            operand = node.right
        else:
            return None
        inner = self._visit(operand, state)
        text = inner.text if inner.precedence > PREC_COMPARISON else f"({inner.text})"
        keyword = "IS NULL" if node.op is BinaryOperator.EQ else "IS NOT NULL"
        return Fragment(f"{text} {keyword}", PREC_COMPARISON)

    def _visit_unary(self, node: UnaryOp, state: CompileState) -> Fragment:
        prec = UNARY_PRECEDENCE[node.op]
        operand = self._visit(node.operand, state)
        text = operand.text
        if operand.precedence < prec:
            text = f"({text})"
        if node.op is UnaryOperator.NOT:
            return Fragment(f"NOT {text}", prec)
        if text.startswith("-"):
            text = f"({text})"
        return Fragment(f"-{text}", prec)

    def _visit_constant(self, node: Constant, state: CompileState) -> Fragment:
        return self._literal(node.value)

    # ------------------------------------------------------------------
    # Literals
    # ------------------------------------------------------------------

    def _literal(self, value: Any) -> Fragment:
        if value is None:
            return Fragment("NULL")
        if isinstance(value, bool):
            return Fragment("TRUE" if value else "FALSE")
        if isinstance(value, enum.Enum):
            return self._literal(value.value)
        if isinstance(value, int):
            return Fragment(str(value), PREC_UNARY if value < 0 else PREC_ATOM)
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                raise CompileError(f"Non-finite float literal: {value!r}")
            return Fragment(repr(value), PREC_UNARY if value < 0 else PREC_ATOM)
        if isinstance(value, Decimal):
            if not value.is_finite():
                raise CompileError(f"Non-finite decimal literal: {value!r}")
            return Fragment(format(value, "f"), PREC_UNARY if value < 0 else PREC_ATOM)
        if isinstance(value, str):
            return Fragment(self._quote(value))
        if isinstance(value, datetime.datetime):
            fmt = self._options.timestamp_format
            text = value.isoformat(timespec="milliseconds") if fmt is None else value.strftime(fmt)
            return Fragment(self._quote(text))
        if isinstance(value, datetime.date):
            return Fragment(self._quote(value.strftime(self._options.date_format)))
        if isinstance(value, datetime.time):
            return Fragment(self._quote(value.strftime(self._options.time_format)))
        if isinstance(value, (list, tuple, set, frozenset)):
            items = ", ".join(self._literal(v).text for v in value)
            return Fragment(f"ARRAY[{items}]")
        if isinstance(value, dict):
            entries = ", ".join(
                f"{self._literal(k).text} := {self._literal(v).text}" for k, v in value.items()
            )
            return Fragment(f"MAP({entries})")
        if is_record_type(type(value)):
            descriptor = describe(type(value))
            entries = ", ".join(
                f"{self.identifier(f.column)} := {self._literal(getattr(value, f.name)).text}"
                for f in descriptor.fields
            )
            return Fragment(f"STRUCT({entries})")
        raise UnsupportedTypeError(type(value), "Values of this type cannot be used as literals.")
