"""Column schema of a query result, derived from the response header.

ksqlDB describes result columns either as one schema string
(``"`ID` STRING KEY, `TAGS` ARRAY<STRING>, `S` STRUCT<`A` INTEGER>"``) or as
parallel ``columnNames`` / ``columnTypes`` lists.  Both are parsed into an
immutable :class:`ColumnSchema` whose column types are small trees
(:class:`ColumnType`) the row materializer can inspect.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Sequence

from pushql.errors import ProtocolError


@dataclass(frozen=True)
class ColumnType:
    """A parsed ksqlDB column type.

    Attributes:
        base: Upper-cased base type name (``STRING``, ``ARRAY``, ``STRUCT``...).
        params: Element types for ``ARRAY`` (1) and ``MAP`` (2).
        fields: ``(name, type)`` pairs for ``STRUCT``.
        precision: Precision for ``DECIMAL``.
        scale: Scale for ``DECIMAL``.
    """

    base: str
    params: tuple[ColumnType, ...] = ()
    fields: tuple[tuple[str, ColumnType], ...] = ()
    precision: int | None = None
    scale: int | None = None

    def __str__(self) -> str:
        if self.base == "ARRAY":
            return f"ARRAY<{self.params[0]}>"
        if self.base == "MAP":
            return f"MAP<{self.params[0]}, {self.params[1]}>"
        if self.base == "STRUCT":
            inner = ", ".join(f"`{name}` {tp}" for name, tp in self.fields)
            return f"STRUCT<{inner}>"
        if self.base == "DECIMAL" and self.precision is not None:
            return f"DECIMAL({self.precision}, {self.scale or 0})"
        return self.base

    def field_type(self, name: str) -> ColumnType | None:
        """Returns the type of struct field ``name`` (case-insensitive)."""
        wanted = name.upper()
        for field_name, tp in self.fields:
            if field_name.upper() == wanted:
                return tp
        return None


@dataclass(frozen=True)
class Column:
    """One result column with its fixed ordinal position."""

    name: str
    type: ColumnType
    ordinal: int


@dataclass(frozen=True)
class ColumnSchema:
    """Ordered, read-only column layout shared by every row of one execution."""

    columns: tuple[Column, ...]
    query_id: str | None = None
    _by_name: dict[str, Column] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        self._by_name.update({c.name.upper(): c for c in self.columns})

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[Column]:
        return iter(self.columns)

    def __getitem__(self, ordinal: int) -> Column:
        return self.columns[ordinal]

    @property
    def names(self) -> list[str]:
        return [c.name for c in self.columns]

    def get(self, name: str) -> Column | None:
        """Returns the column named ``name`` (case-insensitive), or ``None``."""
        return self._by_name.get(name.upper())

    @classmethod
    def from_schema_text(cls, text: str, query_id: str | None = None) -> ColumnSchema:
        """Parse a v1 header schema string.

        Raises:
            ProtocolError: If the text is not a comma-separated list of
                ``name type`` pairs.
        """
        columns: list[Column] = []
        for ordinal, item in enumerate(split_top_level(text)):
            name, type_text = _split_name_and_type(item)
            if type_text.upper().endswith(" KEY"):
                type_text = type_text[: -len(" KEY")].rstrip()
            columns.append(Column(name, parse_column_type(type_text), ordinal))
        if not columns:
            raise ProtocolError("Header schema has no columns.", payload=text, query_id=query_id)
        return cls(tuple(columns), query_id=query_id)

    @classmethod
    def from_names_and_types(
        cls,
        names: Sequence[str],
        types: Sequence[str],
        query_id: str | None = None,
    ) -> ColumnSchema:
        """Build a schema from parallel name/type lists.

        Raises:
            ProtocolError: If the lists differ in length or are empty.
        """
        if len(names) != len(types) or not names:
            raise ProtocolError(
                "Header columnNames and columnTypes must be non-empty and of equal length.",
                payload={"columnNames": list(names), "columnTypes": list(types)},
                query_id=query_id,
            )
        columns = tuple(
            Column(str(n), parse_column_type(str(t)), i)
            for i, (n, t) in enumerate(zip(names, types))
        )
        return cls(columns, query_id=query_id)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def split_top_level(text: str, sep: str = ",") -> list[str]:
    """Split ``text`` on ``sep`` outside of ``<>``, ``()`` and backticks."""
    parts: list[str] = []
    depth = 0
    quoted = False
    start = 0
    for i, ch in enumerate(text):
        if ch == "`":
            quoted = not quoted
        elif quoted:
            continue
        elif ch in "<(":
            depth += 1
        elif ch in ">)":
            depth -= 1
            if depth < 0:
                raise ProtocolError(f"Unbalanced type text: {text!r}", payload=text)
        elif ch == sep and depth == 0:
            parts.append(text[start:i].strip())
            start = i + 1
    if depth != 0 or quoted:
        raise ProtocolError(f"Unbalanced type text: {text!r}", payload=text)
    tail = text[start:].strip()
    if tail:
        parts.append(tail)
    return [p for p in parts if p]


def _split_name_and_type(item: str) -> tuple[str, str]:
    item = item.strip()
    if item.startswith("`"):
        end = item.find("`", 1)
        if end == -1:
            raise ProtocolError(f"Unterminated quoted column name: {item!r}", payload=item)
        name, rest = item[1:end], item[end + 1 :]
    else:
        name, _, rest = item.partition(" ")
    rest = rest.strip()
    if not name or not rest:
        raise ProtocolError(f"Expected 'name type', got {item!r}", payload=item)
    return name, rest


def parse_column_type(text: str) -> ColumnType:
    """Parse a ksqlDB type string into a :class:`ColumnType`.

    Raises:
        ProtocolError: If the type text is malformed.
    """
    text = text.strip()
    upper = text.upper()
    if upper.startswith("ARRAY<") and upper.endswith(">"):
        return ColumnType("ARRAY", params=(parse_column_type(text[6:-1]),))
    if upper.startswith("MAP<") and upper.endswith(">"):
        parts = split_top_level(text[4:-1])
        if len(parts) != 2:
            raise ProtocolError(f"MAP type needs key and value: {text!r}", payload=text)
        return ColumnType("MAP", params=(parse_column_type(parts[0]), parse_column_type(parts[1])))
    if upper.startswith("STRUCT<") and upper.endswith(">"):
        fields = tuple(
            (name, parse_column_type(tp))
            for name, tp in (_split_name_and_type(p) for p in split_top_level(text[7:-1]))
        )
        return ColumnType("STRUCT", fields=fields)
    if upper.startswith("DECIMAL"):
        rest = text[len("DECIMAL") :].strip()
        if not rest:
            return ColumnType("DECIMAL")
        if not (rest.startswith("(") and rest.endswith(")")):
            raise ProtocolError(f"Malformed DECIMAL type: {text!r}", payload=text)
        bits = [b.strip() for b in rest[1:-1].split(",")]
        try:
            precision = int(bits[0])
            scale = int(bits[1]) if len(bits) > 1 else 0
        except ValueError as exc:
            raise ProtocolError(f"Malformed DECIMAL type: {text!r}", payload=text) from exc
        return ColumnType("DECIMAL", precision=precision, scale=scale)
    if not upper or not upper.replace("_", "").isalnum():
        raise ProtocolError(f"Malformed column type: {text!r}", payload=text)
    return ColumnType(upper)
