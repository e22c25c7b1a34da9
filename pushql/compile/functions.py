"""Method-call → ksqlDB function translation.

By default a method name is turned into a ksqlDB function name with
:func:`to_function_name` (``ExtractJsonField`` → ``EXTRACT_JSON_FIELD``,
``extract_json_field`` → ``EXTRACT_JSON_FIELD``) and an instance-method
receiver becomes the first argument::

    m.title.substring(1, 3)   ->  SUBSTRING(TITLE, 1, 3)
    F.ExtractJsonField(m.j)   ->  EXTRACT_JSON_FIELD(J)

``FunctionRegistry`` holds overrides: a plain renamed function, or a
handler that renders the whole call (``startswith`` → ``LIKE``).

Usage::

    @FunctionRegistry.register("ilike")
    def _ilike(call: RenderedCall) -> Fragment:
        ...
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar

from pushql.errors import CompileError
from pushql.schema.expressions import (
    PREC_ATOM,
    PREC_COMPARISON,
    Constant,
    Expression,
)

_WORD_BOUNDARY_1 = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY_2 = re.compile(r"([a-z0-9])([A-Z])")


def to_function_name(method: str) -> str:
    """Convert a PascalCase, camelCase or snake_case name to SCREAMING_SNAKE_CASE."""
    name = _WORD_BOUNDARY_1.sub(r"\1_\2", method)
    name = _WORD_BOUNDARY_2.sub(r"\1_\2", name)
    name = re.sub(r"_+", "_", name).strip("_")
    return name.upper()


def _key(name: str) -> str:
    return name.replace("_", "").lower()


@dataclass(frozen=True)
class Fragment:
    """Compiled text plus the precedence of its outermost operator."""

    text: str
    precedence: int = PREC_ATOM


@dataclass(frozen=True)
class RenderedCall:
    """A method call whose receiver and arguments are already compiled.

    Attributes:
        method: Method name as written.
        target: Compiled receiver, or ``None`` for a free function.
        args: Compiled arguments.
        raw_args: The argument nodes, for handlers that inspect constants.
        quote: Renders a Python string as a ksqlDB string literal.
    """

    method: str
    target: Fragment | None
    args: tuple[Fragment, ...]
    raw_args: tuple[Expression, ...]
    quote: Callable[[str], str]

    @property
    def operands(self) -> tuple[Fragment, ...]:
        """Receiver (if any) followed by the arguments."""
        return (self.target, *self.args) if self.target is not None else self.args


#: Renders a complete call.
FunctionHandler = Callable[[RenderedCall], Fragment]


def call_text(name: str, operands: tuple[Fragment, ...]) -> Fragment:
    """Render ``NAME(arg, ...)``."""
    return Fragment(f"{name}({', '.join(o.text for o in operands)})")


class FunctionRegistry:
    """Registry of method-name overrides.

    Names are matched ignoring case and underscores, so ``StartsWith``,
    ``startswith`` and ``starts_with`` share one entry.  Renames map a method to a
    different ksqlDB function; handlers render the whole call.
    """

    _renames: ClassVar[dict[str, str]] = {}
    _handlers: ClassVar[dict[str, FunctionHandler]] = {}

    @classmethod
    def register(cls, name: str) -> Callable[[FunctionHandler], FunctionHandler]:
        """Decorator that registers a call handler under ``name``."""

        def decorator(handler: FunctionHandler) -> FunctionHandler:
            cls._handlers[_key(name)] = handler
            return handler

        return decorator

    @classmethod
    def register_rename(cls, name: str, function: str) -> None:
        """Map method ``name`` to ksqlDB function ``function``."""
        cls._renames[_key(name)] = function

    @classmethod
    def get_handler(cls, name: str) -> FunctionHandler | None:
        return cls._handlers.get(_key(name))

    @classmethod
    def function_name(cls, name: str, overrides: dict[str, str] | None = None) -> str:
        """Resolve the ksqlDB function name for method ``name``."""
        if overrides:
            for key, value in overrides.items():
                if _key(key) == _key(name):
                    return value
        return cls._renames.get(_key(name)) or to_function_name(name)

    @classmethod
    def render(cls, call: RenderedCall, overrides: dict[str, str] | None = None) -> Fragment:
        """Render ``call`` through a handler, an override, or the name transform."""
        if overrides and any(_key(k) == _key(call.method) for k in overrides):
            return call_text(cls.function_name(call.method, overrides), call.operands)
        handler = cls.get_handler(call.method)
        if handler is not None:
            return handler(call)
        return call_text(cls.function_name(call.method), call.operands)


# ---------------------------------------------------------------------------
# Built-in overrides
# ---------------------------------------------------------------------------

for _method, _function in {
    "upper": "UCASE",
    "lower": "LCASE",
    "strip": "TRIM",
    "len": "LEN",
    "length": "LEN",
}.items():
    FunctionRegistry.register_rename(_method, _function)


#: Escape character for LIKE patterns built from method arguments.
_LIKE_ESCAPE = "\\"


def _escape_like(value: str) -> str:
    for char in (_LIKE_ESCAPE, "%", "_"):
        value = value.replace(char, _LIKE_ESCAPE + char)
    return value


def _like(call: RenderedCall, prefix: str, suffix: str) -> Fragment:
    """Render a ``LIKE`` whose argument matches literally (``%`` and ``_`` escaped)."""
    if call.target is None or len(call.args) != 1:
        raise CompileError(f"'{call.method}' takes exactly one argument on a string member.")
    raw = call.raw_args[0]
    escape_clause = f" ESCAPE {call.quote(_LIKE_ESCAPE)}"
    if isinstance(raw, Constant) and isinstance(raw.value, str):
        escaped = _escape_like(raw.value)
        pattern = call.quote(f"{prefix}{escaped}{suffix}")
        if escaped == raw.value:
            escape_clause = ""
    else:
        argument = call.args[0].text
        for char in (_LIKE_ESCAPE, "%", "_"):
            argument = f"REPLACE({argument}, {call.quote(char)}, {call.quote(_LIKE_ESCAPE + char)})"
        pieces = [call.quote(prefix)] if prefix else []
        pieces.append(argument)
        if suffix:
            pieces.append(call.quote(suffix))
        pattern = f"CONCAT({', '.join(pieces)})"
    return Fragment(f"{_operand(call.target)} LIKE {pattern}{escape_clause}", PREC_COMPARISON)


def _operand(fragment: Fragment) -> str:
    if fragment.precedence <= PREC_COMPARISON:
        return f"({fragment.text})"
    return fragment.text


@FunctionRegistry.register("startswith")
def _startswith(call: RenderedCall) -> Fragment:
    return _like(call, "", "%")


@FunctionRegistry.register("endswith")
def _endswith(call: RenderedCall) -> Fragment:
    return _like(call, "%", "")


@FunctionRegistry.register("contains")
def _contains(call: RenderedCall) -> Fragment:
    return _like(call, "%", "%")


@FunctionRegistry.register("in_")
def _in(call: RenderedCall) -> Fragment:
    if call.target is None or not call.args:
        raise CompileError("'in_' needs a receiver and at least one value.")
    values = ", ".join(a.text for a in call.args)
    return Fragment(f"{_operand(call.target)} IN ({values})", PREC_COMPARISON)


@FunctionRegistry.register("count")
def _count(call: RenderedCall) -> Fragment:
    if not call.operands:
        return Fragment("COUNT(*)")
    return call_text("COUNT", call.operands)


@FunctionRegistry.register("window_start")
def _window_start(call: RenderedCall) -> Fragment:
    return Fragment("WINDOWSTART")


@FunctionRegistry.register("window_end")
def _window_end(call: RenderedCall) -> Fragment:
    return Fragment("WINDOWEND")
