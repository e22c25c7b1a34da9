"""pushQL execution layer: transport, incremental parsing, materialization."""
from pushql.execute.cancellation import CancellationToken
from pushql.execute.client import RestApiClient
from pushql.execute.execution import RowStream, StreamingExecutionClient
from pushql.execute.materializer import RowMaterializer, materialize, project
from pushql.execute.parser import FrameDecoder, JsonValueStream
from pushql.execute.settings import ClientSettings
from pushql.execute.transport import HttpxTransport, Transport

__all__ = [
    "CancellationToken",
    "RestApiClient",
    "RowStream",
    "StreamingExecutionClient",
    "RowMaterializer",
    "materialize",
    "project",
    "FrameDecoder",
    "JsonValueStream",
    "ClientSettings",
    "HttpxTransport",
    "Transport",
]
