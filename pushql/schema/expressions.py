"""Expression node types for typed query expressions.

A query expression is a small immutable tree built from exactly seven node
kinds: :class:`Lambda`, :class:`Parameter`, :class:`MemberAccess`,
:class:`MethodCall`, :class:`BinaryOp`, :class:`UnaryOp` and
:class:`Constant`.  Trees are usually produced by tracing a Python callable
(see :mod:`pushql.schema.tracing`) but can be built by hand::

    row = Parameter("m", Movie)
    pred = Lambda(
        (row,),
        BinaryOp(BinaryOperator.GT, MemberAccess(row, "year"), Constant(2000)),
    )

:class:`Parameter` compares by identity: two parameters with the same name
are distinct bindings.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

# ---------------------------------------------------------------------------
# Node kind enum
# ---------------------------------------------------------------------------


class NodeKind(str, Enum):
    """The discriminator for each expression node type."""

    LAMBDA = "Lambda"
    PARAMETER = "Parameter"
    MEMBER_ACCESS = "MemberAccess"
    METHOD_CALL = "MethodCall"
    BINARY_OP = "BinaryOp"
    UNARY_OP = "UnaryOp"
    CONSTANT = "Constant"


# ---------------------------------------------------------------------------
# Operator enums
# ---------------------------------------------------------------------------


class BinaryOperator(str, Enum):
    """Binary operators (logical, equality, relational, arithmetic)."""

    AND = "AND"
    OR = "OR"
    EQ = "EQ"
    NE = "NE"
    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"
    ADD = "ADD"
    SUB = "SUB"
    MUL = "MUL"
    DIV = "DIV"
    MOD = "MOD"


class UnaryOperator(str, Enum):
    """Unary operators."""

    NOT = "NOT"
    NEGATE = "NEGATE"


#: Logical connectives.
LOGICAL_OPS: frozenset[BinaryOperator] = frozenset({BinaryOperator.AND, BinaryOperator.OR})

#: Equality and relational operators.
COMPARISON_OPS: frozenset[BinaryOperator] = frozenset(
    {
        BinaryOperator.EQ,
        BinaryOperator.NE,
        BinaryOperator.GT,
        BinaryOperator.GTE,
        BinaryOperator.LT,
        BinaryOperator.LTE,
    }
)

#: Arithmetic operators.
ARITHMETIC_OPS: frozenset[BinaryOperator] = frozenset(
    {
        BinaryOperator.ADD,
        BinaryOperator.SUB,
        BinaryOperator.MUL,
        BinaryOperator.DIV,
        BinaryOperator.MOD,
    }
)

# ---------------------------------------------------------------------------
# Precedence levels (higher binds tighter)
# ---------------------------------------------------------------------------

PREC_OR = 1
PREC_AND = 2
PREC_NOT = 3
PREC_COMPARISON = 4
PREC_ADDITIVE = 5
PREC_MULTIPLICATIVE = 6
PREC_UNARY = 7
PREC_ATOM = 8

BINARY_PRECEDENCE: dict[BinaryOperator, int] = {
    BinaryOperator.OR: PREC_OR,
    BinaryOperator.AND: PREC_AND,
    **{op: PREC_COMPARISON for op in COMPARISON_OPS},
    BinaryOperator.ADD: PREC_ADDITIVE,
    BinaryOperator.SUB: PREC_ADDITIVE,
    BinaryOperator.MUL: PREC_MULTIPLICATIVE,
    BinaryOperator.DIV: PREC_MULTIPLICATIVE,
    BinaryOperator.MOD: PREC_MULTIPLICATIVE,
}

UNARY_PRECEDENCE: dict[UnaryOperator, int] = {
    UnaryOperator.NOT: PREC_NOT,
    UnaryOperator.NEGATE: PREC_UNARY,
}

#: Operators for which ``a op (b op c)`` differs from ``(a op b) op c``.
NON_ASSOCIATIVE_OPS: frozenset[BinaryOperator] = frozenset(
    {BinaryOperator.SUB, BinaryOperator.DIV, BinaryOperator.MOD} | COMPARISON_OPS
)


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class Expression:
    """Base class of every expression node."""

    __slots__ = ()

    kind: ClassVar[NodeKind]


@dataclass(frozen=True, eq=False)
class Parameter(Expression):
    """A bound lambda variable.

    Attributes:
        name: Variable name as written by the caller.
        type: Record type the variable ranges over, if known.
    """

    kind: ClassVar[NodeKind] = NodeKind.PARAMETER

    name: str
    type: Any = None


@dataclass(frozen=True)
class MemberAccess(Expression):
    """Attribute access ``target.member``."""

    kind: ClassVar[NodeKind] = NodeKind.MEMBER_ACCESS

    target: Expression
    member: str


@dataclass(frozen=True)
class MethodCall(Expression):
    """A method or free function call.

    Attributes:
        method: Method name as written by the caller (e.g. ``startswith``,
            ``ExtractJsonField``).
        args: Call arguments.
        target: Receiver of an instance-method call; ``None`` for a free
            function such as ``F.count()``.
    """

    kind: ClassVar[NodeKind] = NodeKind.METHOD_CALL

    method: str
    args: tuple[Expression, ...] = ()
    target: Expression | None = None


@dataclass(frozen=True)
class BinaryOp(Expression):
    """A binary operation ``left op right``."""

    kind: ClassVar[NodeKind] = NodeKind.BINARY_OP

    op: BinaryOperator
    left: Expression
    right: Expression


@dataclass(frozen=True)
class UnaryOp(Expression):
    """A unary operation ``op operand``."""

    kind: ClassVar[NodeKind] = NodeKind.UNARY_OP

    op: UnaryOperator
    operand: Expression


@dataclass(frozen=True)
class Constant(Expression):
    """A literal value."""

    kind: ClassVar[NodeKind] = NodeKind.CONSTANT

    value: Any


@dataclass(frozen=True)
class Lambda(Expression):
    """A lambda ``(parameters) => body``."""

    kind: ClassVar[NodeKind] = NodeKind.LAMBDA

    parameters: tuple[Parameter, ...]
    body: Expression


def node_kind(node: object) -> str:
    """Returns the kind name of ``node`` for error reporting."""
    kind = getattr(type(node), "kind", None)
    if isinstance(kind, NodeKind):
        return kind.value
    return type(node).__name__
