"""Compile options and identifier formatting.

``CompileOptions`` is immutable and may be shared freely between threads;
every per-compile mutable state lives inside a single compile call.

Identifier formatting applies casing first, then escaping::

    IdentifierFormatter(CompileOptions()).format("title")          # TITLE
    IdentifierFormatter(
        CompileOptions(identifier_escaping="keywords")
    ).format("from")                                               # `FROM`
"""
from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class IdentifierCasing(str, Enum):
    """How column and alias names are cased in emitted text."""

    UPPER = "upper"
    PRESERVE = "preserve"


class IdentifierEscaping(str, Enum):
    """When identifiers are wrapped in backticks."""

    NEVER = "never"
    KEYWORDS = "keywords"
    ALWAYS = "always"


#: ksqlDB reserved words that must be escaped when used as identifiers.
RESERVED_WORDS: frozenset[str] = frozenset(
    {
        "ALL", "AND", "ARRAY", "AS", "ASC", "BETWEEN", "BY", "CASE", "CAST",
        "CREATE", "DESC", "DISTINCT", "DROP", "ELSE", "EMIT", "END", "EXISTS",
        "FALSE", "FROM", "FULL", "GROUP", "HAVING", "IF", "IN", "INNER",
        "INSERT", "INTO", "IS", "JOIN", "LEFT", "LIKE", "LIMIT", "MAP", "NOT",
        "NULL", "ON", "OR", "OUTER", "PARTITION", "RIGHT", "SELECT", "SHOW",
        "STREAM", "STRUCT", "TABLE", "THEN", "TRUE", "WHEN", "WHERE",
        "WINDOW", "WITH", "WITHIN",
    }
)

_PLAIN_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_@]*$")


def is_plain_identifier(name: str) -> bool:
    """Returns ``True`` if ``name`` needs no quoting on syntactic grounds."""
    return bool(_PLAIN_IDENTIFIER.match(name))


class CompileOptions(BaseModel):
    """Options for one compile call.

    Attributes:
        identifier_casing: Casing applied to column, alias and lambda
            variable names.
        identifier_escaping: Backtick policy for identifiers.
        use_source_alias: Qualify column references with their source alias
            (always enabled for joins).
        source_aliases: Alias per row-parameter name; defaults to the
            parameter name.
        timestamp_format: ``strftime`` format for ``datetime`` literals;
            ``None`` renders ISO-8601 with millisecond precision.
        date_format: ``strftime`` format for ``date`` literals.
        time_format: ``strftime`` format for ``time`` literals.
        function_overrides: Extra method → ksqlDB function name mappings,
            consulted before the built-in overrides.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    identifier_casing: IdentifierCasing = IdentifierCasing.UPPER
    identifier_escaping: IdentifierEscaping = IdentifierEscaping.NEVER
    use_source_alias: bool = False
    source_aliases: dict[str, str] = Field(default_factory=dict)
    timestamp_format: str | None = None
    date_format: str = "%Y-%m-%d"
    time_format: str = "%H:%M:%S"
    function_overrides: dict[str, str] = Field(default_factory=dict)


class IdentifierFormatter:
    """Applies casing and escaping to identifiers."""

    def __init__(self, options: CompileOptions) -> None:
        self._casing = options.identifier_casing
        self._escaping = options.identifier_escaping

    def format(self, name: str) -> str:
        if self._casing is IdentifierCasing.UPPER:
            name = name.upper()
        if self._escaping is IdentifierEscaping.ALWAYS:
            return self.quote(name)
        if self._escaping is IdentifierEscaping.KEYWORDS and (
            name.upper() in RESERVED_WORDS or not is_plain_identifier(name)
        ):
            return self.quote(name)
        return name

    @staticmethod
    def quote(name: str) -> str:
        escaped = name.replace("`", "``")
        return f"`{escaped}`"
