"""Python type → ksqlDB column type translation.

``TypeTranslator.translate`` is deterministic: the same ``(type, metadata)``
always yields the same text.  Containers recurse::

    list[str]                       -> ARRAY<VARCHAR>
    dict[str, list[int]]            -> MAP<VARCHAR, ARRAY<INT>>
    Annotated[Decimal, Precision(10, 2)] -> DECIMAL(10, 2)
    Address (pydantic model)        -> STRUCT<STREET VARCHAR, NUMBER INT>
"""
from __future__ import annotations

import collections.abc
import datetime
import enum
from decimal import Decimal
from typing import Any, get_args, get_origin

from pushql.compile.options import CompileOptions, IdentifierFormatter
from pushql.errors import UnsupportedTypeError
from pushql.schema.records import INT64, describe, find_precision, is_record_type, unwrap_annotation

#: Precision and scale used for ``Decimal`` fields without an override.
DEFAULT_DECIMAL_PRECISION = (38, 9)

_SCALARS: dict[type, str] = {
    str: "VARCHAR",
    bool: "BOOLEAN",
    float: "DOUBLE",
    bytes: "BYTES",
    datetime.datetime: "TIMESTAMP",
    datetime.date: "DATE",
    datetime.time: "TIME",
}

_SEQUENCE_ORIGINS: frozenset[Any] = frozenset(
    {list, tuple, set, frozenset, collections.abc.Sequence, collections.abc.Iterable}
)
_MAPPING_ORIGINS: frozenset[Any] = frozenset(
    {dict, collections.abc.Mapping, collections.abc.MutableMapping}
)


class TypeTranslator:
    """Maps Python annotations to ksqlDB column type text.

    Args:
        options: Compile options; struct field names follow its identifier
            formatting.
    """

    def __init__(self, options: CompileOptions | None = None) -> None:
        self._ident = IdentifierFormatter(options or CompileOptions())

    def translate(self, tp: Any, metadata: tuple[Any, ...] = ()) -> str:
        """Return the column type text for ``tp``.

        Args:
            tp: A Python annotation.
            metadata: Extra annotations attached to the field (precision
                overrides, width markers).

        Raises:
            UnsupportedTypeError: If ``tp`` has no mapping.
        """
        return self._translate(tp, tuple(metadata), ())

    def _translate(self, tp: Any, metadata: tuple[Any, ...], seen: tuple[type, ...]) -> str:
        base, extra, _ = unwrap_annotation(tp)
        metadata = metadata + extra

        if base is int:
            return "BIGINT" if INT64 in metadata else "INT"
        if base is Decimal:
            precision = find_precision(metadata)
            if precision is None:
                p, s = DEFAULT_DECIMAL_PRECISION
            else:
                p, s = precision.precision, precision.scale
            if not 0 < p or not 0 <= s <= p:
                raise UnsupportedTypeError(base, f"Invalid precision/scale ({p}, {s}).")
            return f"DECIMAL({p}, {s})"
        if isinstance(base, type) and issubclass(base, enum.Enum):
            return "VARCHAR"
        if base in _SCALARS:
            return _SCALARS[base]

        origin = get_origin(base)
        args = get_args(base)
        if origin in _SEQUENCE_ORIGINS:
            if not args:
                raise UnsupportedTypeError(base, "Sequence element type is required.")
            if origin is tuple and not (len(args) == 2 and args[1] is Ellipsis):
                if len(set(args)) != 1:
                    raise UnsupportedTypeError(base, "Tuples must be homogeneous.")
            return f"ARRAY<{self._translate(args[0], (), seen)}>"
        if origin in _MAPPING_ORIGINS:
            if len(args) != 2:
                raise UnsupportedTypeError(base, "Mapping key and value types are required.")
            key = self._translate(args[0], (), seen)
            value = self._translate(args[1], (), seen)
            return f"MAP<{key}, {value}>"

        if is_record_type(base):
            if base in seen:
                raise UnsupportedTypeError(base, "Recursive record types cannot be mapped.")
            return self._struct(base, seen + (base,))

        raise UnsupportedTypeError(base)

    def _struct(self, record_type: type, seen: tuple[type, ...]) -> str:
        descriptor = describe(record_type)
        if not descriptor.fields:
            raise UnsupportedTypeError(record_type, "Records need at least one field.")
        parts = [
            f"{self._ident.format(f.column)} {self._translate(f.annotation, (), seen)}"
            for f in descriptor.fields
        ]
        return f"STRUCT<{', '.join(parts)}>"
