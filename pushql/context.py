"""``KsqlDbContext``: one object wiring settings, compiler and execution.

::

    with KsqlDbContext(ClientSettings(base_url="http://localhost:8088")) as ctx:
        query = ctx.create_query("movies", Movie).where(lambda m: m.year > 2000)
        sub = ctx.subscribe(query, CallbackObserver(on_next=print))
        ...
        sub.cancel()
        ctx.rest.terminate_push_query(sub.query_id)

Compilation happens synchronously inside :meth:`subscribe` and
:meth:`execute`, so compile errors are raised to the caller before any
connection is opened.
"""
from __future__ import annotations

from typing import Any, Callable

from pushql.compile.builder import StatementBuilder
from pushql.compile.expression_builder import ExpressionCompiler
from pushql.compile.options import CompileOptions
from pushql.execute.cancellation import CancellationToken
from pushql.execute.client import RestApiClient
from pushql.execute.execution import RowStream, StreamingExecutionClient
from pushql.execute.settings import ClientSettings
from pushql.execute.transport import Transport
from pushql.query import Query
from pushql.schema.statement import CompiledStatement
from pushql.subscription.engine import Subscription
from pushql.subscription.observers import CallbackObserver, Observer


class KsqlDbContext:
    """Entry point for compiling, executing and subscribing to queries.

    Args:
        settings: Connection settings.
        options: Compile options shared by every query of this context.
        transport: Streaming transport; defaults to httpx.
        rest_client: One-shot statement client; created lazily by default.
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        options: CompileOptions | None = None,
        transport: Transport | None = None,
        rest_client: RestApiClient | None = None,
    ) -> None:
        self._settings = settings or ClientSettings()
        self._options = options or CompileOptions()
        self._builder = StatementBuilder(ExpressionCompiler(self._options))
        self._executor = StreamingExecutionClient(self._settings, transport)
        self._rest = rest_client

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    @property
    def rest(self) -> RestApiClient:
        """One-shot statement client (``/ksql``)."""
        if self._rest is None:
            self._rest = RestApiClient(self._settings)
        return self._rest

    def create_query(self, source: str, record_type: Any = None, alias: str | None = None) -> Query:
        return Query(source, record_type, alias)

    def compile(self, query: Query | CompiledStatement) -> CompiledStatement:
        """Compile ``query`` with this context's options; no I/O."""
        if isinstance(query, CompiledStatement):
            return query
        return self._builder.build(query.to_spec())

    def execute(
        self,
        query: Query | CompiledStatement,
        target: Any = None,
        cancellation: CancellationToken | None = None,
    ) -> RowStream:
        """Compile (if needed) and open a row stream.

        ``target`` defaults to the query's record type, or ``dict`` when the
        query has its own projection.
        """
        statement = self.compile(query)
        return self._executor.execute(statement, self._target(query, target), cancellation)

    def subscribe(
        self,
        query: Query | CompiledStatement,
        observer: Observer | Callable[[Any], None],
        target: Any = None,
        start: bool = True,
    ) -> Subscription:
        """Compile ``query`` and deliver its rows to ``observer``.

        Args:
            query: A query or an already compiled statement.
            observer: An :class:`Observer`, or a callable used as ``on_next``.
            target: Row shape; see :meth:`execute`.
            start: Start the reader thread immediately.

        Raises:
            CompileError: If the query cannot be compiled.
        """
        statement = self.compile(query)
        row_target = self._target(query, target)
        if not isinstance(observer, Observer):
            observer = CallbackObserver(on_next=observer)

        def open_stream(token: CancellationToken) -> RowStream:
            return self._executor.execute(statement, row_target, token)

        subscription = Subscription(open_stream, observer)
        return subscription.start() if start else subscription

    @staticmethod
    def _target(query: Query | CompiledStatement, target: Any) -> Any:
        if target is not None or not isinstance(query, Query):
            return target
        if query.has_projection:
            return dict
        return query.record_type

    def close(self) -> None:
        self._executor.close()
        if self._rest is not None:
            self._rest.close()

    def __enter__(self) -> KsqlDbContext:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
