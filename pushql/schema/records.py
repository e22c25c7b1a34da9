"""Record descriptors: precomputed column layouts for record types.

A *record type* is a pydantic model class or a dataclass describing the rows
of a stream or table.  :func:`describe` inspects it once and caches a
:class:`RecordDescriptor` that the compiler, the type translator and the row
materializer all reuse.

Column naming
-------------
The column name of a field is its pydantic ``alias`` when one is set,
otherwise the field name.  Precision for ``Decimal`` fields is attached with
:class:`Precision` (or pydantic's ``max_digits`` / ``decimal_places``)::

    class Payment(BaseModel):
        id: int
        amount: Annotated[Decimal, Precision(10, 2)]
        total: BigInt
        tags: list[str] = []
"""

from __future__ import annotations

import dataclasses
import types
from dataclasses import dataclass, field
from functools import cached_property, lru_cache
from typing import Annotated, Any, Union, get_args, get_origin, get_type_hints

from pydantic import BaseModel, TypeAdapter


@dataclass(frozen=True)
class Precision:
    """Precision/scale annotation for fixed-point numeric fields."""

    precision: int
    scale: int


class _Width:
    """Marker for 64-bit integer fields."""

    def __repr__(self) -> str:
        return "BIGINT"


#: Marker instance carried by :data:`BigInt`.
INT64 = _Width()

#: A 64-bit integer field (``BIGINT`` column).
BigInt = Annotated[int, INT64]


# ---------------------------------------------------------------------------
# Annotation helpers
# ---------------------------------------------------------------------------


def unwrap_annotation(annotation: Any) -> tuple[Any, tuple[Any, ...], bool]:
    """Strip ``Optional`` and ``Annotated`` wrappers from ``annotation``.

    Returns:
        ``(base_type, metadata, optional)`` where ``metadata`` collects every
        ``Annotated`` extra encountered and ``optional`` is ``True`` when
        ``None`` is an accepted value.
    """
    metadata: list[Any] = []
    optional = False
    while True:
        origin = get_origin(annotation)
        if origin is Annotated:
            args = get_args(annotation)
            annotation = args[0]
            metadata.extend(args[1:])
            continue
        if origin is Union or origin is types.UnionType:
            args = [a for a in get_args(annotation) if a is not type(None)]
            if len(args) != len(get_args(annotation)):
                optional = True
            if len(args) == 1:
                annotation = args[0]
                continue
        break
    return annotation, tuple(metadata), optional


def find_precision(metadata: tuple[Any, ...]) -> Precision | None:
    """Returns the precision override carried by ``metadata``, if any."""
    for item in metadata:
        if isinstance(item, Precision):
            return item
        digits = getattr(item, "max_digits", None)
        places = getattr(item, "decimal_places", None)
        if digits is not None and places is not None:
            return Precision(int(digits), int(places))
    return None


def is_record_type(tp: Any) -> bool:
    """Returns ``True`` for pydantic model classes and dataclass types."""
    if not isinstance(tp, type):
        return False
    return issubclass(tp, BaseModel) or dataclasses.is_dataclass(tp)


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldDescriptor:
    """One field of a record type.

    Attributes:
        name: Python attribute name.
        column: Column name on the wire and in query text.
        annotation: Declared annotation (``Optional`` / ``Annotated`` kept).
        required: ``False`` when the field has a default.
        key: Input key the record type validates the field under (the
            pydantic validation alias, else the alias, else ``name``).
    """

    name: str
    column: str
    annotation: Any
    required: bool = True
    key: str = ""

    def __post_init__(self) -> None:
        if not self.key:
            object.__setattr__(self, "key", self.name)

    @property
    def base_type(self) -> Any:
        return unwrap_annotation(self.annotation)[0]

    @property
    def metadata(self) -> tuple[Any, ...]:
        return unwrap_annotation(self.annotation)[1]

    @property
    def optional(self) -> bool:
        return unwrap_annotation(self.annotation)[2]


@dataclass(frozen=True)
class RecordDescriptor:
    """Column layout of a record type, in declaration order."""

    record_type: type
    fields: tuple[FieldDescriptor, ...]
    _by_name: dict[str, FieldDescriptor] = field(default_factory=dict, repr=False, compare=False)
    _by_column: dict[str, FieldDescriptor] = field(default_factory=dict, repr=False, compare=False)

    def get_field(self, name: str) -> FieldDescriptor | None:
        """Returns the field declared as ``name``, or ``None``."""
        return self._by_name.get(name)

    def find_column(self, column: str) -> FieldDescriptor | None:
        """Returns the field for ``column`` (case-insensitive), or ``None``."""
        return self._by_column.get(column.upper())

    @property
    def column_names(self) -> list[str]:
        return [f.column for f in self.fields]

    @cached_property
    def adapter(self) -> TypeAdapter[Any]:
        """Pydantic validator for the record type, built on first use."""
        return TypeAdapter(self.record_type)

    def validate(self, values: dict[str, Any]) -> Any:
        """Instantiate the record type from ``{field.key: value}``.

        Validators and constraints declared on the record type run as usual.

        Raises:
            pydantic.ValidationError: If validation fails.
        """
        return self.adapter.validate_python(values)


def _pydantic_fields(model: type[BaseModel]) -> list[FieldDescriptor]:
    out: list[FieldDescriptor] = []
    for name, info in model.model_fields.items():
        annotation = info.annotation
        if info.metadata:
            annotation = Annotated[(annotation, *info.metadata)]  # type: ignore[valid-type]
        out.append(
            FieldDescriptor(
                name=name,
                column=info.alias or name,
                annotation=annotation,
                required=info.is_required(),
                key=_input_key(name, info.alias, info.validation_alias),
            )
        )
    return out


def _input_key(name: str, alias: str | None, validation_alias: Any) -> str:
    if isinstance(validation_alias, str):
        return validation_alias
    return alias or name


def _dataclass_fields(cls: type) -> list[FieldDescriptor]:
    hints = get_type_hints(cls, include_extras=True)
    out: list[FieldDescriptor] = []
    for f in dataclasses.fields(cls):
        if not f.init:
            continue
        has_default = (
            f.default is not dataclasses.MISSING or f.default_factory is not dataclasses.MISSING
        )
        out.append(
            FieldDescriptor(
                name=f.name,
                column=f.metadata.get("column", f.name),
                annotation=hints.get(f.name, Any),
                required=not has_default,
            )
        )
    return out


@lru_cache(maxsize=None)
def describe(record_type: type) -> RecordDescriptor:
    """Build (once) and return the descriptor of ``record_type``.

    Raises:
        TypeError: If ``record_type`` is neither a pydantic model nor a
            dataclass.
    """
    if isinstance(record_type, type) and issubclass(record_type, BaseModel):
        fields = _pydantic_fields(record_type)
    elif isinstance(record_type, type) and dataclasses.is_dataclass(record_type):
        fields = _dataclass_fields(record_type)
    else:
        raise TypeError(f"{record_type!r} is not a pydantic model or dataclass.")
    return RecordDescriptor(
        record_type=record_type,
        fields=tuple(fields),
        _by_name={f.name: f for f in fields},
        _by_column={f.column.upper(): f for f in fields},
    )
