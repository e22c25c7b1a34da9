"""Build expression trees by tracing ordinary Python callables.

Each parameter of the traced callable is bound to an :class:`ExpressionProxy`.
Attribute access, comparisons, arithmetic, ``&`` / ``|`` / ``~``, unary ``-``
and method calls on a proxy record :mod:`~pushql.schema.expressions` nodes
instead of evaluating anything::

    from pushql.schema.tracing import F, trace

    pred = trace(lambda m: (m.title.startswith("Star")) & (m.year > 1977), Movie)
    proj = trace_projection(lambda m: {"title": m.title, "n": F.count()}, Movie)

Python's ``and`` / ``or`` / ``not`` cannot be overloaded; using a proxy in a
boolean context raises :class:`~pushql.errors.CompileError`.  Remember that
``&`` and ``|`` bind tighter than comparisons, so parenthesise each
comparison.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, get_type_hints

from pushql.errors import CompileError
from pushql.schema.expressions import (
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
)


class ExpressionProxy:
    """Stand-in value that records operations as expression nodes."""

    __slots__ = ("_node",)

    def __init__(self, node: Expression) -> None:
        object.__setattr__(self, "_node", node)

    @property
    def node(self) -> Expression:
        """The expression recorded so far."""
        return self._node

    # ------------------------------------------------------------------
    # Member access and calls
    # ------------------------------------------------------------------

    def __getattr__(self, name: str) -> ExpressionProxy:
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        return ExpressionProxy(MemberAccess(self._node, name))

    def __setattr__(self, name: str, value: Any) -> None:
        raise CompileError("Query expressions are read-only; assignment is not supported.")

    def __call__(self, *args: Any) -> ExpressionProxy:
        node = self._node
        if not isinstance(node, MemberAccess):
            raise CompileError("Only members can be called inside a query expression.")
        call_args = tuple(to_expression(a) for a in args)
        return ExpressionProxy(MethodCall(node.member, call_args, target=node.target))

    def in_(self, *values: Any) -> ExpressionProxy:
        """Membership test: ``x.id.in_([1, 2, 3])`` or ``x.id.in_(1, 2, 3)``."""
        if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
            values = tuple(values[0])
        args = tuple(to_expression(v) for v in values)
        return ExpressionProxy(MethodCall("in_", args, target=self._node))

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def _binary(self, op: BinaryOperator, other: Any, reflected: bool = False) -> ExpressionProxy:
        other_node = to_expression(other)
        if reflected:
            return ExpressionProxy(BinaryOp(op, other_node, self._node))
        return ExpressionProxy(BinaryOp(op, self._node, other_node))

    def __eq__(self, other: Any) -> ExpressionProxy:  # type: ignore[override]
        return self._binary(BinaryOperator.EQ, other)

    def __ne__(self, other: Any) -> ExpressionProxy:  # type: ignore[override]
        return self._binary(BinaryOperator.NE, other)

    def __gt__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.GT, other)

    def __ge__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.GTE, other)

    def __lt__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.LT, other)

    def __le__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.LTE, other)

    __hash__ = None  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Logical
    # ------------------------------------------------------------------

    def __and__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.AND, other)

    def __rand__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.AND, other, reflected=True)

    def __or__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.OR, other)

    def __ror__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.OR, other, reflected=True)

    def __invert__(self) -> ExpressionProxy:
        return ExpressionProxy(UnaryOp(UnaryOperator.NOT, self._node))

    def __bool__(self) -> bool:
        raise CompileError(
            "Query expressions cannot be used as Python booleans; "
            "use '&', '|' and '~' instead of 'and', 'or' and 'not'."
        )

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __add__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.ADD, other)

    def __radd__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.ADD, other, reflected=True)

    def __sub__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.SUB, other)

    def __rsub__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.SUB, other, reflected=True)

    def __mul__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.MUL, other)

    def __rmul__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.MUL, other, reflected=True)

    def __truediv__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.DIV, other)

    def __rtruediv__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.DIV, other, reflected=True)

    def __mod__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.MOD, other)

    def __rmod__(self, other: Any) -> ExpressionProxy:
        return self._binary(BinaryOperator.MOD, other, reflected=True)

    def __neg__(self) -> ExpressionProxy:
        return ExpressionProxy(UnaryOp(UnaryOperator.NEGATE, self._node))

    def __repr__(self) -> str:
        return f"ExpressionProxy({self._node!r})"


class _Functions:
    """Namespace producing free function calls: ``F.ExtractJsonField(x.j, "$.a")``."""

    def __getattr__(self, name: str) -> Callable[..., ExpressionProxy]:
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)

        def call(*args: Any) -> ExpressionProxy:
            return ExpressionProxy(MethodCall(name, tuple(to_expression(a) for a in args)))

        call.__name__ = name
        return call


#: Free ksqlDB function namespace.
F = _Functions()


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def to_expression(value: Any) -> Expression:
    """Convert a proxy, node, nested callable or plain value to a node."""
    if isinstance(value, ExpressionProxy):
        return value.node
    if isinstance(value, Expression):
        return value
    if inspect.isfunction(value) or inspect.ismethod(value):
        return trace(value)
    return Constant(value)


def _parameters_for(fn: Callable[..., Any], types: tuple[Any, ...]) -> tuple[Parameter, ...]:
    signature = inspect.signature(fn)
    try:
        hints = get_type_hints(fn)
    except (NameError, TypeError):
        hints = {}
    params: list[Parameter] = []
    for i, name in enumerate(signature.parameters):
        record_type = types[i] if i < len(types) else hints.get(name)
        params.append(Parameter(name, record_type))
    return tuple(params)


def trace(fn: Callable[..., Any], *types: Any) -> Lambda:
    """Trace ``fn`` into a :class:`Lambda` node.

    Args:
        fn: A callable taking one proxy per row or element variable.
        *types: Record types for the callable's parameters, positionally.
            Missing entries fall back to the callable's annotations.

    Returns:
        The traced lambda.

    Raises:
        CompileError: If ``fn`` returns a projection shape (dict or tuple);
            use :func:`trace_projection` for those.
    """
    params = _parameters_for(fn, types)
    result = fn(*(ExpressionProxy(p) for p in params))
    if isinstance(result, (dict, tuple, list)):
        raise CompileError("A predicate must return a single expression, not a projection.")
    return Lambda(params, to_expression(result))


@dataclass(frozen=True)
class ProjectionItem:
    """One projected expression with an optional output alias."""

    expr: Expression
    alias: str | None = None


@dataclass(frozen=True)
class Projection:
    """A traced projection: shared parameters plus ordered items."""

    parameters: tuple[Parameter, ...]
    items: tuple[ProjectionItem, ...]


def trace_projection(fn: Callable[..., Any], *types: Any) -> Projection:
    """Trace ``fn`` into a :class:`Projection`.

    ``fn`` may return a single expression, a tuple/list of expressions, or a
    dict mapping output aliases to expressions.
    """
    params = _parameters_for(fn, types)
    result = fn(*(ExpressionProxy(p) for p in params))
    if isinstance(result, dict):
        items = tuple(ProjectionItem(to_expression(v), str(k)) for k, v in result.items())
    elif isinstance(result, (tuple, list)):
        items = tuple(ProjectionItem(to_expression(v)) for v in result)
    else:
        items = (ProjectionItem(to_expression(result)),)
    if not items:
        raise CompileError("A projection must contain at least one item.", clause="SELECT")
    return Projection(params, items)


def trace_all(fns: tuple[Callable[..., Any], ...], *types: Any) -> Lambda:
    """Trace several predicates over the same rows and join them with AND.

    Parameter names come from the callable declaring the most parameters;
    each callable receives as many row proxies as it declares.
    """
    if not fns:
        raise CompileError("At least one predicate is required.")
    widest = max(fns, key=lambda f: len(inspect.signature(f).parameters))
    params = _parameters_for(widest, types)
    proxies = [ExpressionProxy(p) for p in params]
    body: Expression | None = None
    for fn in fns:
        arity = len(inspect.signature(fn).parameters)
        result = fn(*proxies[:arity])
        if isinstance(result, (dict, tuple, list)):
            raise CompileError("A predicate must return a single expression, not a projection.")
        node = to_expression(result)
        body = node if body is None else BinaryOp(BinaryOperator.AND, body, node)
    return Lambda(params, body)
