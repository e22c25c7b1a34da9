"""Tests for TypeTranslator and TypeGenerator."""

from __future__ import annotations

import datetime
from decimal import Decimal
from typing import Annotated, Optional, Sequence

import pytest
from pydantic import BaseModel, Field

from pushql.compile.options import CompileOptions
from pushql.compile.type_generator import TypeGenerator
from pushql.compile.type_translator import TypeTranslator
from pushql.errors import UnsupportedTypeError
from pushql.schema.records import BigInt, Precision
from tests.fixtures import Address, Customer, Genre, Payment, Release


class Node(BaseModel):
    value: int
    child: Optional["Node"] = None


class Empty(BaseModel):
    pass


class Invoice(BaseModel):
    total: Decimal = Field(max_digits=12, decimal_places=4)


@pytest.fixture
def translator() -> TypeTranslator:
    return TypeTranslator()


@pytest.mark.parametrize(
    "tp, expected",
    [
        (str, "VARCHAR"),
        (int, "INT"),
        (BigInt, "BIGINT"),
        (bool, "BOOLEAN"),
        (float, "DOUBLE"),
        (bytes, "BYTES"),
        (datetime.datetime, "TIMESTAMP"),
        (datetime.date, "DATE"),
        (datetime.time, "TIME"),
        (Genre, "VARCHAR"),
        (Optional[int], "INT"),
        (int | None, "INT"),
    ],
)
def test_scalars(translator, tp, expected):
    assert translator.translate(tp) == expected


def test_decimal_default_and_override(translator):
    assert translator.translate(Decimal) == "DECIMAL(38, 9)"
    assert translator.translate(Annotated[Decimal, Precision(10, 2)]) == "DECIMAL(10, 2)"
    assert translator.translate(Decimal, (Precision(5, 0),)) == "DECIMAL(5, 0)"


def test_pydantic_decimal_constraints_give_precision():
    text = TypeGenerator().create_type(Invoice).text
    assert text == "CREATE TYPE INVOICE AS STRUCT<TOTAL DECIMAL(12, 4)>;"


def test_invalid_precision_is_rejected(translator):
    with pytest.raises(UnsupportedTypeError):
        translator.translate(Annotated[Decimal, Precision(2, 5)])


def test_containers_recurse(translator):
    assert translator.translate(list[str]) == "ARRAY<VARCHAR>"
    assert translator.translate(Sequence[BigInt]) == "ARRAY<BIGINT>"
    assert translator.translate(tuple[int, ...]) == "ARRAY<INT>"
    assert translator.translate(dict[str, list[int]]) == "MAP<VARCHAR, ARRAY<INT>>"


def test_struct_from_record(translator):
    assert translator.translate(Address) == "STRUCT<STREET VARCHAR, NUMBER INT>"
    assert translator.translate(list[Address]) == "ARRAY<STRUCT<STREET VARCHAR, NUMBER INT>>"


def test_dataclass_struct(translator):
    assert translator.translate(Release) == (
        "STRUCT<TITLE VARCHAR, GENRE VARCHAR, SCORES MAP<VARCHAR, INT>>"
    )


def test_struct_field_names_follow_identifier_options():
    translator = TypeTranslator(CompileOptions(identifier_escaping="always"))
    assert translator.translate(Address) == "STRUCT<`STREET` VARCHAR, `NUMBER` INT>"


def test_translation_is_deterministic(translator):
    assert translator.translate(Customer) == translator.translate(Customer)


@pytest.mark.parametrize(
    "tp",
    [object, complex, list, dict[str, int] | str, tuple[int, str]],
)
def test_unsupported_types(translator, tp):
    with pytest.raises(UnsupportedTypeError):
        translator.translate(tp)


def test_recursive_record_is_rejected(translator):
    with pytest.raises(UnsupportedTypeError):
        translator.translate(Node)


def test_empty_record_is_rejected(translator):
    with pytest.raises(UnsupportedTypeError):
        translator.translate(Empty)


# ---------------------------------------------------------------------------
# CREATE TYPE
# ---------------------------------------------------------------------------


def test_create_type():
    text = TypeGenerator().create_type(Address).text
    assert text == "CREATE TYPE ADDRESS AS STRUCT<STREET VARCHAR, NUMBER INT>;"


def test_create_type_with_name_and_guard():
    text = TypeGenerator().create_type(Payment, name="payment_v2", if_not_exists=True).text
    assert text == "CREATE TYPE IF NOT EXISTS PAYMENT_V2 AS STRUCT<ID INT, AMOUNT DECIMAL(10, 2)>;"


def test_drop_type():
    assert TypeGenerator().drop_type("address").text == "DROP TYPE ADDRESS;"
    assert TypeGenerator().drop_type("address", if_exists=True).text == "DROP TYPE IF EXISTS ADDRESS;"
