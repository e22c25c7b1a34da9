"""Row materialization: raw column values → caller record types.

A :class:`RowMaterializer` is bound once per execution, when the header
arrives: it resolves every target field to a column up front, so each row
is converted positionally without name lookups.

Target shapes
-------------
- a pydantic model class or a dataclass: fields are matched to columns by
  column name, case-insensitively; extra columns are ignored.  The record is
  built through pydantic validation, so validators and constraints declared
  on the record type apply;
- ``dict`` (or ``None``): ``{column_name: value}`` in schema order, with
  values decoded per column type (``DOUBLE`` values become ``float``).

Conversions widen but never narrow.  Before pydantic sees a value, a
precondition pass rejects lossy narrowing: ``1.5`` into ``int``, an ``int``
beyond ``2**53`` into ``float``, a ``Decimal`` that a ``float`` cannot
represent exactly, or more fractional digits than a ``Precision`` allows.
The same pass maps ksqlDB wire shapes (base64 ``BYTES``, epoch
milliseconds, enum names, upper-cased struct keys) onto the target.  Any
failure raises :class:`~pushql.errors.ValueConversionError`; a row either
materializes completely or fails.
"""
from __future__ import annotations

import base64
import binascii
import collections.abc
import datetime
import enum
import math
from collections.abc import Sequence
from decimal import Decimal
from functools import lru_cache
from typing import Any, get_args, get_origin

from pydantic import TypeAdapter, ValidationError

from pushql.errors import ProtocolError, ValueConversionError
from pushql.schema.columns import Column, ColumnSchema, ColumnType
from pushql.schema.records import FieldDescriptor, describe, find_precision, is_record_type, unwrap_annotation

#: Largest integer magnitude a float represents exactly.
_MAX_EXACT_FLOAT_INT = 2**53

_EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
_EPOCH_DATE = datetime.date(1970, 1, 1)
_MILLISECOND = datetime.timedelta(milliseconds=1)

_SEQUENCE_ORIGINS = {list, tuple, set, frozenset, collections.abc.Sequence, collections.abc.Iterable}
_MAPPING_ORIGINS = {dict, collections.abc.Mapping, collections.abc.MutableMapping}

_INTEGRAL_COLUMNS = {"INT", "INTEGER", "BIGINT"}


class RowMaterializer:
    """Converts row records of one execution into ``target`` instances.

    Args:
        schema: The execution's column schema.
        target: Record type, ``dict`` or ``None``.

    Raises:
        ValueConversionError: If a required field has no column in
            ``schema``.
    """

    def __init__(self, schema: ColumnSchema, target: Any = None) -> None:
        self._schema = schema
        self._target = dict if target is None else target
        self._plan: list[tuple[FieldDescriptor, Column]] = []
        self._by_key: dict[str, Column] = {}
        if self._target is dict:
            return
        if not is_record_type(self._target):
            raise TypeError(f"{self._target!r} is not a record type or dict.")
        for fd in describe(self._target).fields:
            column = schema.get(fd.column)
            if column is None:
                if fd.required:
                    raise ValueConversionError(
                        fd.column, None, self._target, "The result has no such column."
                    )
                continue
            self._plan.append((fd, column))
            self._by_key[fd.key] = column

    @property
    def schema(self) -> ColumnSchema:
        return self._schema

    @property
    def target(self) -> Any:
        return self._target

    def materialize(self, values: Sequence[Any]) -> Any:
        """Convert one row record.

        Raises:
            ProtocolError: If ``values`` does not match the schema length.
            ValueConversionError: If any value cannot be converted.
        """
        if len(values) != len(self._schema):
            raise ProtocolError(
                f"Row has {len(values)} values but the schema has {len(self._schema)} columns.",
                payload=list(values),
                query_id=self._schema.query_id,
            )
        if self._target is dict:
            return {c.name: from_wire(values[c.ordinal], c.type) for c in self._schema}
        prepared = {
            fd.key: _prepare(values[column.ordinal], fd.annotation, column.name)
            for fd, column in self._plan
        }
        try:
            return describe(self._target).validate(prepared)
        except ValidationError as exc:
            raise self._record_error(exc, values) from exc

    def _record_error(self, exc: ValidationError, values: Sequence[Any]) -> ValueConversionError:
        detail = exc.errors()[0]
        loc = detail["loc"]
        column = self._by_key.get(str(loc[0])) if loc else None
        if column is None:
            return ValueConversionError(
                _path(self._target.__name__, loc), list(values), self._target, detail["msg"]
            )
        return ValueConversionError(
            _path(column.name, loc[1:]), values[column.ordinal], self._target, detail["msg"]
        )


def materialize(values: Sequence[Any], schema: ColumnSchema, target: Any = None) -> Any:
    """Materialize a single row record (binds a fresh materializer)."""
    return RowMaterializer(schema, target).materialize(values)


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


def convert(value: Any, annotation: Any, column: str) -> Any:
    """Convert raw ``value`` of ``column`` to ``annotation``.

    Raises:
        ValueConversionError: If the conversion is impossible or lossy.
    """
    prepared = _prepare(value, annotation, column)
    try:
        return _adapter(annotation).validate_python(prepared)
    except ValidationError as exc:
        detail = exc.errors()[0]
        raise ValueConversionError(
            _path(column, detail["loc"]), value, annotation, detail["msg"]
        ) from exc


def _adapter(annotation: Any) -> TypeAdapter[Any]:
    try:
        hash(annotation)
    except TypeError:
        return TypeAdapter(annotation)
    return _cached_adapter(annotation)


@lru_cache(maxsize=256)
def _cached_adapter(annotation: Any) -> TypeAdapter[Any]:
    return TypeAdapter(annotation)


def _path(column: str, loc: Sequence[Any]) -> str:
    return ".".join([column, *(str(part) for part in loc)])


def _prepare(value: Any, annotation: Any, column: str) -> Any:
    """Reject lossy narrowing and map wire shapes onto ``annotation``.

    Everything this pass leaves alone is coerced by pydantic.
    """
    base, metadata, _ = unwrap_annotation(annotation)
    if value is None or base is Any or base is object:
        return value

    if base is bool:
        if not isinstance(value, bool):
            raise ValueConversionError(column, value, base)
        return value
    if base in (int, float, Decimal) and isinstance(value, bool):
        raise ValueConversionError(column, value, base)
    if base is int:
        return _narrow_to_int(value, column)
    if base is float:
        return _widen_to_float(value, column)
    if base is Decimal:
        return _check_scale(value, column, metadata)
    if base is bytes and isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise ValueConversionError(column, value, bytes, "Invalid base64.") from exc
    if _is_epoch_millis(value):
        if base is datetime.datetime:
            return _EPOCH + value * _MILLISECOND
        if base is datetime.date:
            return _EPOCH_DATE + datetime.timedelta(days=value)
        if base is datetime.time:
            if not 0 <= value < 86_400_000:
                raise ValueConversionError(column, value, base, "Out of range for a time of day.")
            return (datetime.datetime.min + value * _MILLISECOND).time()
    if isinstance(base, type) and issubclass(base, enum.Enum):
        if isinstance(value, str) and value in base.__members__:
            if value not in {m.value for m in base}:
                return base[value]
        return value

    origin = get_origin(base)
    args = get_args(base)
    if origin in _SEQUENCE_ORIGINS and isinstance(value, list):
        element = args[0] if args else Any
        return [_prepare(v, element, column) for v in value]
    if origin in _MAPPING_ORIGINS and isinstance(value, dict):
        key_type, value_type = args if len(args) == 2 else (Any, Any)
        return {
            _prepare(k, key_type, column): _prepare(v, value_type, column) for k, v in value.items()
        }
    if is_record_type(base) and isinstance(value, dict):
        return _prepare_struct(value, base, column)
    return value


def _narrow_to_int(value: Any, column: str) -> Any:
    if isinstance(value, (float, Decimal)):
        if not _is_integral(value):
            raise ValueConversionError(column, value, int, "The value is not integral.")
        return int(value)
    return value


def _is_integral(value: float | Decimal) -> bool:
    if isinstance(value, Decimal):
        return value.is_finite() and value == value.to_integral_value()
    return value.is_integer()


def _widen_to_float(value: Any, column: str) -> Any:
    if isinstance(value, int):
        if abs(value) > _MAX_EXACT_FLOAT_INT:
            raise ValueConversionError(column, value, float, "The value would lose precision.")
        return float(value)
    if isinstance(value, Decimal):
        result = float(value)
        if value.is_finite() and Decimal(repr(result)) != value:
            raise ValueConversionError(column, value, float, "The value would lose precision.")
        return result
    return value


def _check_scale(value: Any, column: str, metadata: tuple[Any, ...]) -> Any:
    if isinstance(value, float):
        value = Decimal(repr(value))
    precision = find_precision(metadata)
    if precision is None or not isinstance(value, Decimal) or not value.is_finite():
        return value
    exponent = value.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > precision.scale:
        raise ValueConversionError(
            column, value, Decimal, f"More than {precision.scale} fractional digits."
        )
    return value


def _is_epoch_millis(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _prepare_struct(value: dict[str, Any], record_type: type, column: str) -> dict[str, Any]:
    by_key = {str(k).upper(): v for k, v in value.items()}
    prepared: dict[str, Any] = {}
    for fd in describe(record_type).fields:
        key = fd.column.upper()
        path = f"{column}.{fd.column}"
        if key not in by_key:
            if fd.required:
                raise ValueConversionError(path, None, record_type, "The struct has no such field.")
            continue
        prepared[fd.key] = _prepare(by_key[key], fd.annotation, path)
    return prepared


def from_wire(value: Any, column_type: ColumnType) -> Any:
    """Decode a raw wire value per its column type.

    ``DOUBLE`` values (parsed as ``Decimal``) become ``float``; containers
    and structs are decoded recursively; everything else passes through.
    """
    if value is None:
        return None
    base = column_type.base
    if base == "DOUBLE" and isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return float(value)
    if base == "ARRAY" and isinstance(value, list):
        return [from_wire(v, column_type.params[0]) for v in value]
    if base == "MAP" and isinstance(value, dict):
        return {k: from_wire(v, column_type.params[1]) for k, v in value.items()}
    if base == "STRUCT" and isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            field_type = column_type.field_type(str(k))
            out[k] = v if field_type is None else from_wire(v, field_type)
        return out
    return value


# ---------------------------------------------------------------------------
# Projection back to column order
# ---------------------------------------------------------------------------


def project(record: Any, schema: ColumnSchema) -> list[Any]:
    """Render ``record`` back into column order as wire values.

    Column types pick the wire form: ``DOUBLE`` and ``DECIMAL`` values are
    rendered as ``Decimal`` (what the parser produces), temporal values in
    ``BIGINT``/``INTEGER`` columns as epoch milliseconds/days, and struct
    keys in the schema's spelling.  Columns with no matching field project
    to ``None``.
    """
    if isinstance(record, dict):
        by_name = {str(k).upper(): v for k, v in record.items()}
        return [to_wire(by_name.get(c.name.upper()), c.type) for c in schema]
    descriptor = describe(type(record))
    out: list[Any] = []
    for column in schema:
        fd = descriptor.find_column(column.name)
        out.append(None if fd is None else to_wire(getattr(record, fd.name), column.type))
    return out


def to_wire(value: Any, column_type: ColumnType | None = None) -> Any:
    """Convert a materialized value back to its JSON wire form."""
    base = column_type.base if column_type is not None else None
    if isinstance(value, enum.Enum):
        value = value.value
    if value is None or isinstance(value, (bool, str)):
        return value
    if base in ("DOUBLE", "DECIMAL") and isinstance(value, (int, float)):
        return _to_decimal_wire(value)
    if isinstance(value, (int, float, Decimal)):
        return value
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, datetime.datetime):
        if base in _INTEGRAL_COLUMNS:
            aware = value if value.tzinfo is not None else value.replace(tzinfo=datetime.timezone.utc)
            return (aware - _EPOCH) // _MILLISECOND
        return _timestamp_text(value)
    if isinstance(value, datetime.date):
        if base in _INTEGRAL_COLUMNS:
            return (value - _EPOCH_DATE).days
        return value.isoformat()
    if isinstance(value, datetime.time):
        if base in _INTEGRAL_COLUMNS:
            midnight = datetime.datetime.combine(_EPOCH_DATE, datetime.time())
            return (datetime.datetime.combine(_EPOCH_DATE, value) - midnight) // _MILLISECOND
        return value.isoformat(timespec=_timespec(value.microsecond))
    if isinstance(value, dict):
        value_type = column_type.params[1] if base == "MAP" else None
        if base == "STRUCT":
            return {k: to_wire(v, column_type.field_type(str(k))) for k, v in value.items()}
        return {to_wire(k): to_wire(v, value_type) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        element_type = column_type.params[0] if base == "ARRAY" else None
        return [to_wire(v, element_type) for v in value]
    if is_record_type(type(value)):
        return _struct_wire(value, column_type if base == "STRUCT" else None)
    raise TypeError(f"Cannot project value of type {type(value).__name__}.")


def _to_decimal_wire(value: int | float) -> Any:
    if isinstance(value, float):
        return Decimal(repr(value)) if math.isfinite(value) else value
    return Decimal(value)


def _timespec(microsecond: int) -> str:
    if microsecond == 0:
        return "seconds"
    return "milliseconds" if microsecond % 1000 == 0 else "microseconds"


def _timestamp_text(value: datetime.datetime) -> str:
    timespec = "milliseconds" if value.microsecond % 1000 == 0 else "microseconds"
    text = value.isoformat(timespec=timespec)
    if value.utcoffset() == datetime.timedelta(0) and text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _struct_wire(value: Any, struct_type: ColumnType | None) -> dict[str, Any]:
    descriptor = describe(type(value))
    if struct_type is None:
        return {fd.column: to_wire(getattr(value, fd.name)) for fd in descriptor.fields}
    out: dict[str, Any] = {}
    for name, field_type in struct_type.fields:
        fd = descriptor.find_column(name)
        if fd is not None:
            out[name] = to_wire(getattr(value, fd.name), field_type)
    return out
