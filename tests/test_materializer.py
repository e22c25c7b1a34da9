"""Tests for RowMaterializer and value conversion."""

from __future__ import annotations

import dataclasses
import datetime
from decimal import Decimal
from typing import Optional

import pytest
from pydantic import BaseModel, Field, field_validator

from pushql.errors import ProtocolError, ValueConversionError
from pushql.execute.materializer import RowMaterializer, convert, materialize, project
from pushql.schema.columns import ColumnSchema
from tests.fixtures import MOVIE_SCHEMA, Customer, Genre, Movie, Payment, Release, Tweet

MOVIES = ColumnSchema.from_schema_text(MOVIE_SCHEMA, "q1")


class Sensor(BaseModel):
    n: int = Field(gt=0)
    label: str

    @field_validator("label")
    @classmethod
    def non_blank_upper(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("label is blank")
        return value.upper()


@dataclasses.dataclass
class Reading:
    ts: datetime.datetime
    samples: list[float]


@dataclasses.dataclass
class Event:
    at: datetime.datetime


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def test_row_into_pydantic_model():
    movie = materialize([1, "Heat", 1995, Decimal("8.3")], MOVIES, Movie)
    assert isinstance(movie, Movie)
    assert (movie.id, movie.title, movie.release_year, movie.rating) == (1, "Heat", 1995, 8.3)


def test_widening_int_into_float():
    movie = materialize([1, "Heat", 1995, 8], MOVIES, Movie)
    assert movie.rating == 8.0
    assert isinstance(movie.rating, float)


def test_integral_decimal_into_int():
    movie = materialize([1, "Heat", Decimal("1995.0"), None], MOVIES, Movie)
    assert movie.release_year == 1995


def test_fractional_value_into_int_fails_with_column():
    with pytest.raises(ValueConversionError) as exc_info:
        materialize([1, "Heat", Decimal("1995.5"), None], MOVIES, Movie)
    assert exc_info.value.column == "RELEASE_YEAR"
    assert exc_info.value.value == Decimal("1995.5")


def test_dict_target_in_schema_order():
    row = materialize([1, "Heat", 1995, None], MOVIES)
    assert list(row.items()) == [("ID", 1), ("TITLE", "Heat"), ("RELEASE_YEAR", 1995), ("RATING", None)]
    assert materialize([1, "Heat", 1995, None], MOVIES, dict) == row


def test_dict_target_decodes_double_columns_as_float():
    schema = ColumnSchema.from_schema_text(
        "`RATING` DOUBLE, `SAMPLES` ARRAY<DOUBLE>, `POINT` STRUCT<`X` DOUBLE, `LABEL` STRING>, "
        "`WEIGHTS` MAP<STRING, DOUBLE>, `PRICE` DECIMAL(4, 2)"
    )
    row = materialize(
        [
            Decimal("8.3"),
            [Decimal("1.5"), 2],
            {"X": Decimal("0.5"), "LABEL": "a"},
            {"w": Decimal("0.25")},
            Decimal("1.50"),
        ],
        schema,
    )
    assert row == {
        "RATING": 8.3,
        "SAMPLES": [1.5, 2.0],
        "POINT": {"X": 0.5, "LABEL": "a"},
        "WEIGHTS": {"w": 0.25},
        "PRICE": Decimal("1.50"),
    }
    assert isinstance(row["RATING"], float)
    assert all(isinstance(v, float) for v in row["SAMPLES"])
    assert isinstance(row["POINT"]["X"], float)
    assert isinstance(row["WEIGHTS"]["w"], float)
    assert isinstance(row["PRICE"], Decimal)


def test_model_constraints_and_validators_apply():
    schema = ColumnSchema.from_schema_text("`N` INTEGER, `LABEL` STRING")
    assert materialize([3, "kitchen"], schema, Sensor) == Sensor(n=3, label="KITCHEN")
    with pytest.raises(ValueConversionError) as exc_info:
        materialize([0, "kitchen"], schema, Sensor)
    assert exc_info.value.column == "N"
    assert exc_info.value.value == 0
    with pytest.raises(ValueConversionError) as exc_info:
        materialize([3, " "], schema, Sensor)
    assert exc_info.value.column == "LABEL"


def test_extra_columns_are_ignored_and_optional_fields_default():
    schema = ColumnSchema.from_schema_text(
        "`TITLE` STRING, `EXTRA` STRING, `ID` INTEGER, `RELEASE_YEAR` INTEGER"
    )
    movie = materialize(["Heat", "x", 1, 1995], schema, Movie)
    assert (movie.id, movie.title, movie.rating) == (1, "Heat", None)


def test_missing_required_column_fails_at_bind_time():
    schema = ColumnSchema.from_schema_text("`ID` INTEGER, `RELEASE_YEAR` INTEGER")
    with pytest.raises(ValueConversionError) as exc_info:
        RowMaterializer(schema, Movie)
    assert exc_info.value.column == "title"


def test_aliased_field_reads_its_column():
    schema = ColumnSchema.from_schema_text("`ID` BIGINT, `MESSAGE` STRING, `AUTHOR_NAME` STRING")
    tweet = materialize([7, "hello", "ann"], schema, Tweet)
    assert (tweet.id, tweet.message, tweet.author) == (7, "hello", "ann")


def test_nested_struct_and_array():
    schema = ColumnSchema.from_schema_text(
        "`ID` BIGINT, `NAME` STRING, `ADDRESS` STRUCT<`STREET` STRING, `NUMBER` INTEGER>, "
        "`TAGS` ARRAY<STRING>"
    )
    customer = materialize([1, "Ann", {"street": "Main", "NUMBER": 5}, ["a", "b"]], schema, Customer)
    assert customer.address.street == "Main"
    assert customer.address.number == 5
    assert customer.tags == ["a", "b"]


def test_nested_struct_missing_field():
    schema = ColumnSchema.from_schema_text(
        "`ID` BIGINT, `NAME` STRING, `ADDRESS` STRUCT<`STREET` STRING>"
    )
    with pytest.raises(ValueConversionError) as exc_info:
        materialize([1, "Ann", {"STREET": "Main"}], schema, Customer)
    assert exc_info.value.column == "ADDRESS.number"


def test_dataclass_with_enum_and_map():
    schema = ColumnSchema.from_schema_text(
        "`TITLE` STRING, `GENRE` STRING, `SCORES` MAP<STRING, INTEGER>"
    )
    release = materialize(["X", "DRAMA", {"a": 1}], schema, Release)
    assert release == Release("X", Genre.DRAMA, {"a": 1})


def test_decimal_scale_is_enforced():
    schema = ColumnSchema.from_schema_text("`ID` INTEGER, `AMOUNT` DECIMAL(10, 2)")
    assert materialize([1, Decimal("12.50")], schema, Payment).amount == Decimal("12.50")
    assert materialize([1, 100], schema, Payment).amount == Decimal(100)
    with pytest.raises(ValueConversionError):
        materialize([1, Decimal("12.345")], schema, Payment)


def test_row_length_mismatch():
    materializer = RowMaterializer(MOVIES, Movie)
    with pytest.raises(ProtocolError):
        materializer.materialize([1, "Heat"])


def test_non_record_target_is_rejected():
    with pytest.raises(TypeError):
        RowMaterializer(MOVIES, int)


# ---------------------------------------------------------------------------
# Scalar conversion
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, annotation, expected",
    [
        (True, bool, True),
        (3, float, 3.0),
        (Decimal("0.1"), float, 0.1),
        (Decimal("2.0"), int, 2),
        (5, Decimal, Decimal(5)),
        ("1.25", Decimal, Decimal("1.25")),
        ("aGk=", bytes, b"hi"),
        (None, Optional[int], None),
        ("SCIFI", Genre, Genre.SCIFI),
        ([1, 2], tuple[int, ...], (1, 2)),
        ("2024-01-02", datetime.date, datetime.date(2024, 1, 2)),
        (1, datetime.date, datetime.date(1970, 1, 2)),
        ("03:04:05", datetime.time, datetime.time(3, 4, 5)),
        (3_600_000, datetime.time, datetime.time(1, 0)),
        (0, datetime.datetime, datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)),
        (
            "2024-01-02T03:04:05.000Z",
            datetime.datetime,
            datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc),
        ),
    ],
)
def test_conversions(value, annotation, expected):
    assert convert(value, annotation, "C") == expected


@pytest.mark.parametrize(
    "value, annotation",
    [
        (1, bool),
        (True, int),
        (1.5, int),
        (2**53 + 1, float),
        (Decimal("0.1000000000000000000001"), float),
        (1, str),
        ("not-a-number", Decimal),
        ("***", bytes),
        ("yesterday", datetime.datetime),
        (86_400_000, datetime.time),
        ("HORROR", Genre),
        (None, int),
        ("x", list[int]),
        (["x"], list[int]),
        ({"a": "x"}, dict[str, int]),
    ],
)
def test_lossy_or_impossible_conversions(value, annotation):
    with pytest.raises(ValueConversionError):
        convert(value, annotation, "C")


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


def test_project_restores_column_order():
    values = [1, "Heat", 1995, None]
    assert project(materialize(values, MOVIES, Movie), MOVIES) == values


def test_project_dict_and_missing_columns():
    assert project({"title": "Heat", "id": 1}, MOVIES) == [1, "Heat", None, None]


def test_project_wire_forms():
    schema = ColumnSchema.from_schema_text("`TITLE` STRING, `GENRE` STRING, `SCORES` MAP<STRING, INTEGER>")
    assert project(Release("X", Genre.DRAMA, {"a": 1}), schema) == ["X", "DRAMA", {"a": 1}]


@pytest.mark.parametrize(
    "schema_text, target, values",
    [
        (MOVIE_SCHEMA, Movie, [1, "Heat", 1995, Decimal("8.3")]),
        ("`ID` INTEGER, `AMOUNT` DECIMAL(10, 2)", Payment, [1, Decimal("12.50")]),
        (
            "`ID` BIGINT, `NAME` STRING, `ADDRESS` STRUCT<`STREET` STRING, `NUMBER` INTEGER>, "
            "`TAGS` ARRAY<STRING>",
            Customer,
            [1, "Ann", {"STREET": "Main", "NUMBER": 5}, ["a", "b"]],
        ),
        (
            "`TITLE` STRING, `GENRE` STRING, `SCORES` MAP<STRING, INTEGER>",
            Release,
            ["X", "DRAMA", {"a": 1, "b": 2}],
        ),
        (
            "`TS` TIMESTAMP, `SAMPLES` ARRAY<DOUBLE>",
            Reading,
            ["2024-01-02T03:04:05.123", [Decimal("1.5"), Decimal("0.1")]],
        ),
        ("`TS` TIMESTAMP, `SAMPLES` ARRAY<DOUBLE>", Reading, ["2024-01-02T03:04:05.000Z", []]),
        ("`AT` BIGINT", Event, [1704164645123]),
    ],
    ids=["double", "decimal", "struct-array", "map", "timestamp", "timestamp-utc", "epoch-millis"],
)
def test_project_reproduces_wire_row(schema_text, target, values):
    schema = ColumnSchema.from_schema_text(schema_text)
    assert project(materialize(values, schema, target), schema) == values


def test_epoch_millis_materialize_as_utc_datetime():
    event = materialize([1704164645123], ColumnSchema.from_schema_text("`AT` BIGINT"), Event)
    assert event.at == datetime.datetime(
        2024, 1, 2, 3, 4, 5, 123000, tzinfo=datetime.timezone.utc
    )
