"""Shared pytest fixtures for pushQL tests."""
from __future__ import annotations

import pytest

from pushql.compile.builder import StatementBuilder
from pushql.compile.expression_builder import ExpressionCompiler
from pushql.compile.options import CompileOptions
from pushql.execute.settings import ClientSettings
from pushql.schema.statement import CompiledStatement, StatementKind

BASE_URL = "http://ksqldb.test:8088"


@pytest.fixture
def compiler() -> ExpressionCompiler:
    """Compiler with default options (upper-case, no escaping)."""
    return ExpressionCompiler()


@pytest.fixture
def builder() -> StatementBuilder:
    return StatementBuilder()


@pytest.fixture
def keyword_compiler() -> ExpressionCompiler:
    """Compiler that backtick-quotes reserved words."""
    return ExpressionCompiler(CompileOptions(identifier_escaping="keywords"))


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings(base_url=BASE_URL)


@pytest.fixture
def push_statement() -> CompiledStatement:
    """A push query over the movies stream."""
    return CompiledStatement(
        text="SELECT *\nFROM MOVIES\nEMIT CHANGES;",
        kind=StatementKind.PUSH_QUERY,
        properties={"auto.offset.reset": "earliest"},
    )
