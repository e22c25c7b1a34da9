"""Unit tests for ExpressionCompiler."""

from __future__ import annotations

import datetime
from decimal import Decimal

import pytest
from pydantic import BaseModel

from pushql.compile.expression_builder import ExpressionCompiler
from pushql.compile.functions import to_function_name
from pushql.compile.options import CompileOptions
from pushql.errors import (
    CompileError,
    InvalidMemberError,
    UnsupportedExpressionError,
    UnsupportedTypeError,
)
from pushql.schema.expressions import (
    BinaryOp,
    BinaryOperator,
    Constant,
    Expression,
    Lambda,
    MemberAccess,
    Parameter,
)
from pushql.schema.tracing import F, trace, trace_projection
from tests.fixtures import Address, Customer, Genre, Movie, Tweet


class Counter(BaseModel):
    field: str
    count: int


class Event(BaseModel):
    window: str
    size: int


class Conditional(Expression):
    """A node kind the compiler does not know."""


def _c(fn, *types, compiler: ExpressionCompiler | None = None, **kwargs) -> str:
    return (compiler or ExpressionCompiler()).compile(trace(fn, *types), **kwargs)


# ---------------------------------------------------------------------------
# Operators and precedence
# ---------------------------------------------------------------------------


def test_and_of_comparisons():
    assert _c(lambda x: (x.field == "A") & (x.count > 3), Counter) == "FIELD = 'A' AND COUNT > 3"


def test_relational_operators():
    assert _c(lambda m: m.id != 1, Movie) == "ID != 1"
    assert _c(lambda m: m.id >= 1, Movie) == "ID >= 1"
    assert _c(lambda m: m.id <= 1, Movie) == "ID <= 1"
    assert _c(lambda m: m.id < 1, Movie) == "ID < 1"


def test_parentheses_only_where_precedence_requires():
    assert _c(lambda m: (m.release_year + 1) * 2, Movie) == "(RELEASE_YEAR + 1) * 2"
    assert _c(lambda m: m.release_year + 1 * 2, Movie) == "RELEASE_YEAR + 2"
    assert _c(lambda m: m.id + m.release_year * 2, Movie) == "ID + RELEASE_YEAR * 2"
    assert _c(lambda m: m.id + 1 > 5, Movie) == "ID + 1 > 5"


def test_non_associative_right_operand_is_parenthesised():
    assert _c(lambda m: m.id - (m.release_year - 1), Movie) == "ID - (RELEASE_YEAR - 1)"
    assert _c(lambda m: m.id - m.release_year - 1, Movie) == "ID - RELEASE_YEAR - 1"
    assert _c(lambda m: m.id / (m.release_year % 7), Movie) == "ID / (RELEASE_YEAR % 7)"


def test_or_inside_and():
    text = _c(lambda m: ((m.id == 1) | (m.id == 2)) & (m.release_year > 2000), Movie)
    assert text == "(ID = 1 OR ID = 2) AND RELEASE_YEAR > 2000"


def test_and_inside_or_needs_no_parentheses():
    text = _c(lambda m: (m.id == 1) | ((m.id == 2) & (m.release_year > 2000)), Movie)
    assert text == "ID = 1 OR ID = 2 AND RELEASE_YEAR > 2000"


def test_not_and_negation():
    assert _c(lambda m: ~((m.id == 1) & (m.title == "x")), Movie) == "NOT (ID = 1 AND TITLE = 'x')"
    assert _c(lambda m: ~(m.id == 1), Movie) == "NOT ID = 1"
    assert _c(lambda m: -m.id, Movie) == "-ID"
    assert _c(lambda m: -(m.id + 1), Movie) == "-(ID + 1)"
    assert _c(lambda m: -(-m.id), Movie) == "-(-ID)"


def test_reflected_operators():
    assert _c(lambda m: 10 - m.id, Movie) == "10 - ID"
    assert _c(lambda m: 2 * m.id, Movie) == "2 * ID"


def test_comparison_with_none_is_null_check():
    assert _c(lambda m: m.rating == None, Movie) == "RATING IS NULL"  # noqa: E711
    assert _c(lambda m: m.rating != None, Movie) == "RATING IS NOT NULL"  # noqa: E711


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


def test_struct_member_uses_arrow():
    assert _c(lambda c: c.address.street == "Main", Customer) == "ADDRESS->STREET = 'Main'"


def test_pydantic_alias_is_column_name():
    assert _c(lambda t: t.author == "ann", Tweet) == "AUTHOR_NAME = 'ann'"


def test_unknown_member_is_invalid():
    with pytest.raises(InvalidMemberError) as exc_info:
        _c(lambda m: m.budget > 1, Movie, clause="WHERE")
    assert exc_info.value.member == "budget"
    assert exc_info.value.record_type is Movie
    assert exc_info.value.clause == "WHERE"


def test_unknown_struct_member_is_invalid():
    with pytest.raises(InvalidMemberError):
        _c(lambda c: c.address.city == "x", Customer)


def test_untyped_parameter_uses_member_name():
    assert _c(lambda r: r.anything == 1) == "ANYTHING = 1"


def test_row_variable_is_not_a_value():
    with pytest.raises(CompileError):
        _c(lambda m: m == 1, Movie)


# ---------------------------------------------------------------------------
# Literals
# ---------------------------------------------------------------------------


def test_string_literal_escapes_quotes():
    assert _c(lambda m: m.title == "O'Brien", Movie) == "TITLE = 'O''Brien'"


@pytest.mark.parametrize(
    "value, expected",
    [
        (True, "TRUE"),
        (False, "FALSE"),
        (None, "NULL"),
        (42, "42"),
        (1.5, "1.5"),
        (Decimal("1.50"), "1.50"),
        (datetime.datetime(2024, 1, 2, 3, 4, 5), "'2024-01-02T03:04:05.000'"),
        (datetime.date(2024, 1, 2), "'2024-01-02'"),
        (datetime.time(3, 4, 5), "'03:04:05'"),
        ([1, 2], "ARRAY[1, 2]"),
        ({"a": 1}, "MAP('a' := 1)"),
        (Genre.DRAMA, "'DRAMA'"),
        (Address(street="Main", number=1), "STRUCT(STREET := 'Main', NUMBER := 1)"),
    ],
)
def test_literals(value, expected):
    assert ExpressionCompiler().literal(value) == expected


def test_temporal_literal_formats_are_configurable():
    compiler = ExpressionCompiler(CompileOptions(timestamp_format="%Y-%m-%d %H:%M:%S"))
    assert compiler.literal(datetime.datetime(2024, 1, 2, 3, 4, 5)) == "'2024-01-02 03:04:05'"


def test_non_finite_float_is_rejected():
    with pytest.raises(CompileError):
        ExpressionCompiler().literal(float("nan"))


def test_unsupported_constant_type():
    with pytest.raises(UnsupportedTypeError):
        ExpressionCompiler().literal(object())


# ---------------------------------------------------------------------------
# Method calls
# ---------------------------------------------------------------------------


def test_string_predicates_become_like():
    assert _c(lambda m: m.title.startswith("Star"), Movie) == "TITLE LIKE 'Star%'"
    assert _c(lambda m: m.title.endswith("s"), Movie) == "TITLE LIKE '%s'"
    assert _c(lambda m: m.title.contains("War"), Movie) == "TITLE LIKE '%War%'"


def test_like_with_expression_pattern_uses_concat():
    text = _c(lambda c: c.name.startswith(c.address.street), Customer)
    assert text == (
        r"NAME LIKE CONCAT(REPLACE(REPLACE(REPLACE(ADDRESS->STREET, '\', '\\'), '%', '\%'), "
        r"'_', '\_'), '%') ESCAPE '\'"
    )


def test_like_wildcards_in_constants_match_literally():
    assert _c(lambda m: m.title.startswith("50%"), Movie) == r"TITLE LIKE '50\%%' ESCAPE '\'"
    assert _c(lambda m: m.title.contains("a_b"), Movie) == r"TITLE LIKE '%a\_b%' ESCAPE '\'"
    assert _c(lambda m: m.title.endswith("C:\\"), Movie) == r"TITLE LIKE '%C:\\' ESCAPE '\'"
    assert _c(lambda m: m.title.contains("it's"), Movie) == "TITLE LIKE '%it''s%'"


def test_like_combined_with_and():
    text = _c(lambda m: m.title.startswith("Star") & (m.release_year > 1977), Movie)
    assert text == "TITLE LIKE 'Star%' AND RELEASE_YEAR > 1977"


def test_renamed_and_transformed_functions():
    assert _c(lambda m: m.title.upper() == "X", Movie) == "UCASE(TITLE) = 'X'"
    assert _c(lambda m: m.title.substring(1, 3) == "X", Movie) == "SUBSTRING(TITLE, 1, 3) = 'X'"
    text = _c(lambda m: F.ExtractJsonField(m.title, "$.a") == "1", Movie)
    assert text == "EXTRACT_JSON_FIELD(TITLE, '$.a') = '1'"


def test_in_list():
    assert _c(lambda m: m.id.in_([1, 2, 3]), Movie) == "ID IN (1, 2, 3)"
    assert _c(lambda m: m.title.in_("a", "b"), Movie) == "TITLE IN ('a', 'b')"


def test_function_overrides_take_priority():
    compiler = ExpressionCompiler(CompileOptions(function_overrides={"upper": "UPPER"}))
    assert _c(lambda m: m.title.upper() == "X", Movie, compiler=compiler) == "UPPER(TITLE) = 'X'"


@pytest.mark.parametrize(
    "method, expected",
    [
        ("ExtractJsonField", "EXTRACT_JSON_FIELD"),
        ("extract_json_field", "EXTRACT_JSON_FIELD"),
        ("extractJsonField", "EXTRACT_JSON_FIELD"),
        ("getURLHost", "GET_URL_HOST"),
        ("Abs", "ABS"),
    ],
)
def test_function_name_transform(method, expected):
    assert to_function_name(method) == expected


# ---------------------------------------------------------------------------
# Nested lambdas
# ---------------------------------------------------------------------------


def test_nested_lambda_declaration():
    text = _c(lambda c: F.Transform(c.tags, lambda t: F.ucase(t)), Customer)
    assert text == "TRANSFORM(TAGS, T => UCASE(T))"


def test_nested_lambda_parameter_declared_once():
    text = _c(lambda c: F.Filter(c.tags, lambda t: (t == "a") | (t == "b") | (t == "c")), Customer)
    assert text == "FILTER(TAGS, T => T = 'a' OR T = 'b' OR T = 'c')"
    assert text.count("T =>") == 1


def test_two_parameter_lambda():
    text = _c(lambda c: F.Reduce(c.tags, 0, lambda acc, t: acc + F.len(t)), Customer)
    assert text == "REDUCE(TAGS, 0, (ACC, T) => ACC + LEN(T))"


def test_unbound_parameter_is_rejected():
    row, stray = Parameter("m", Movie), Parameter("x")
    expr = Lambda((row,), BinaryOp(BinaryOperator.EQ, MemberAccess(row, "id"), stray))
    with pytest.raises(CompileError):
        ExpressionCompiler().compile(expr)


def test_compile_state_is_per_call():
    compiler = ExpressionCompiler()
    expr = trace(lambda c: F.Transform(c.tags, lambda t: F.ucase(t)), Customer)
    assert compiler.compile(expr) == compiler.compile(expr)


# ---------------------------------------------------------------------------
# Unsupported nodes and Python boolean operators
# ---------------------------------------------------------------------------


def test_unknown_node_kind_is_rejected():
    row = Parameter("m", Movie)
    with pytest.raises(UnsupportedExpressionError) as exc_info:
        ExpressionCompiler().compile(Lambda((row,), Conditional()))
    assert exc_info.value.kind == "Conditional"
    assert isinstance(exc_info.value, CompileError)


def test_non_node_inside_tree_is_rejected():
    row = Parameter("m", Movie)
    expr = Lambda((row,), BinaryOp(BinaryOperator.EQ, MemberAccess(row, "id"), 1))
    with pytest.raises(UnsupportedExpressionError):
        ExpressionCompiler().compile(expr)


def test_python_and_is_rejected():
    with pytest.raises(CompileError):
        trace(lambda m: m.id > 1 and m.id < 5, Movie)


def test_constant_only_expression():
    assert ExpressionCompiler().compile(Constant("x")) == "'x'"


# ---------------------------------------------------------------------------
# Identifiers and qualification
# ---------------------------------------------------------------------------


def test_keyword_columns_are_escaped(keyword_compiler):
    assert _c(lambda e: e.window == "x", Event, compiler=keyword_compiler) == "`WINDOW` = 'x'"
    assert _c(lambda e: e.size == 1, Event, compiler=keyword_compiler) == "SIZE = 1"


def test_always_escape_and_preserve_case():
    always = ExpressionCompiler(CompileOptions(identifier_escaping="always"))
    assert _c(lambda m: m.id == 1, Movie, compiler=always) == "`ID` = 1"
    preserve = ExpressionCompiler(CompileOptions(identifier_casing="preserve"))
    assert _c(lambda m: m.id == 1, Movie, compiler=preserve) == "id = 1"


def test_source_alias_qualification():
    compiler = ExpressionCompiler(CompileOptions(use_source_alias=True))
    assert _c(lambda m: m.title == "x", Movie, compiler=compiler) == "M.TITLE = 'x'"
    mapped = ExpressionCompiler(CompileOptions(use_source_alias=True, source_aliases={"m": "mv"}))
    assert _c(lambda m: m.title == "x", Movie, compiler=mapped) == "MV.TITLE = 'x'"


def test_explicit_aliases_qualify_every_member_consistently():
    text = _c(lambda m: (m.id == 1) & (m.title == "x"), Movie, aliases=["movies"])
    assert text == "MOVIES.ID = 1 AND MOVIES.TITLE = 'x'"


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def test_projection_with_aliases():
    projection = trace_projection(lambda m: {"name": m.title, "year": m.release_year}, Movie)
    assert ExpressionCompiler().compile_projection(projection) == [
        "TITLE AS NAME",
        "RELEASE_YEAR AS YEAR",
    ]


def test_projection_tuple_and_star():
    compiler = ExpressionCompiler()
    assert compiler.compile_projection(trace_projection(lambda m: (m.id, m.title), Movie)) == [
        "ID",
        "TITLE",
    ]
    assert compiler.compile_projection(trace_projection(lambda m: m, Movie)) == ["*"]


def test_projection_count_star():
    projection = trace_projection(lambda m: {"n": F.count()}, Movie)
    assert ExpressionCompiler().compile_projection(projection) == ["COUNT(*) AS N"]
