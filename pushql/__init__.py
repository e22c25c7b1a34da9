"""pushQL – typed streaming queries for ksqlDB.

Write Python lambdas. Get rows.

Public API
----------
``compile_query``
    Compile a :class:`Query` to a ksqlDB statement without any I/O.

``KsqlDbContext``
    Compile, execute and subscribe to queries against one server.

Re-exported types
-----------------
``Query``, ``F``, ``CompileOptions``, ``ClientSettings``, window specs,
``Subscription`` and observers, ``RestApiClient``, and all error classes.

Extensibility
-------------
Method calls translate to ksqlDB functions by name
(``m.name.ExtractJsonField("$.a")`` → ``EXTRACT_JSON_FIELD(NAME, '$.a')``).
Custom translations can be registered via::

    from pushql.compile.functions import Fragment, FunctionRegistry, RenderedCall
    from pushql.schema.expressions import PREC_COMPARISON

    @FunctionRegistry.register("is_blank")
    def _is_blank(call: RenderedCall) -> Fragment:
        return Fragment(f"LEN(TRIM({call.target.text})) = 0", PREC_COMPARISON)
"""

from __future__ import annotations

from pushql.compile.builder import StatementBuilder
from pushql.compile.expression_builder import ExpressionCompiler
from pushql.compile.functions import FunctionRegistry
from pushql.compile.options import CompileOptions, IdentifierCasing, IdentifierEscaping
from pushql.compile.type_generator import TypeGenerator
from pushql.compile.type_translator import TypeTranslator
from pushql.context import KsqlDbContext
from pushql.errors import (
    CompileError,
    ConversionError,
    InvalidMemberError,
    InvalidWindowError,
    NetworkError,
    ProtocolError,
    PushQLError,
    QueryError,
    StatementError,
    StreamError,
    UnsupportedExpressionError,
    UnsupportedTypeError,
    ValueConversionError,
)
from pushql.execute.cancellation import CancellationToken
from pushql.execute.client import RestApiClient
from pushql.execute.execution import RowStream, StreamingExecutionClient
from pushql.execute.materializer import RowMaterializer, materialize, project
from pushql.execute.settings import ClientSettings
from pushql.query import Query
from pushql.schema.columns import ColumnSchema
from pushql.schema.records import BigInt, Precision
from pushql.schema.statement import CompiledStatement, EndpointType, StatementKind
from pushql.schema.tracing import F, trace, trace_projection
from pushql.schema.windows import Duration, HoppingWindow, SessionWindow, TimeUnit, TumblingWindow
from pushql.subscription.engine import Subscription, SubscriptionState
from pushql.subscription.observers import CallbackObserver, CollectingObserver, Observer

__all__ = [
    # Core pipeline
    "compile_query",
    "KsqlDbContext",
    "Query",
    "F",
    "trace",
    "trace_projection",
    # Records and windows
    "BigInt",
    "Precision",
    "Duration",
    "TimeUnit",
    "TumblingWindow",
    "HoppingWindow",
    "SessionWindow",
    # Compilation
    "CompileOptions",
    "IdentifierCasing",
    "IdentifierEscaping",
    "ExpressionCompiler",
    "StatementBuilder",
    "FunctionRegistry",
    "TypeTranslator",
    "TypeGenerator",
    "CompiledStatement",
    "StatementKind",
    "EndpointType",
    # Execution
    "ClientSettings",
    "CancellationToken",
    "StreamingExecutionClient",
    "RowStream",
    "ColumnSchema",
    "RowMaterializer",
    "materialize",
    "project",
    "RestApiClient",
    # Subscriptions
    "Subscription",
    "SubscriptionState",
    "Observer",
    "CallbackObserver",
    "CollectingObserver",
    # Errors
    "PushQLError",
    "CompileError",
    "UnsupportedExpressionError",
    "InvalidMemberError",
    "UnsupportedTypeError",
    "InvalidWindowError",
    "StreamError",
    "ProtocolError",
    "ConversionError",
    "ValueConversionError",
    "NetworkError",
    "QueryError",
    "StatementError",
]


def compile_query(query: Query, options: CompileOptions | None = None) -> CompiledStatement:
    """Compile ``query`` to a ksqlDB statement.

    This never performs I/O; the statement can be executed any number of
    times::

        statement = pushql.compile_query(
            Query("movies", Movie).where(lambda m: m.year > 2000).limit(5)
        )
        statement.text
        # SELECT *
        # FROM MOVIES
        # WHERE YEAR > 2000
        # EMIT CHANGES
        # LIMIT 5;

    Args:
        query: The query to compile.
        options: Compile options; defaults to ``CompileOptions()``.

    Returns:
        A :class:`CompiledStatement`.

    Raises:
        CompileError: (or subclass) if any clause cannot be compiled.
    """
    return StatementBuilder(options=options).build(query.to_spec())
