"""pushQL schema models: expression nodes, record descriptors, windows, column schemas."""
from pushql.schema.columns import Column, ColumnSchema, ColumnType, parse_column_type
from pushql.schema.expressions import (
    BinaryOp,
    BinaryOperator,
    Constant,
    Expression,
    Lambda,
    MemberAccess,
    MethodCall,
    NodeKind,
    Parameter,
    UnaryOp,
    UnaryOperator,
)
from pushql.schema.query_plan import JoinSpec, QuerySpec, SourceRef
from pushql.schema.records import BigInt, Precision, RecordDescriptor, describe
from pushql.schema.statement import CompiledStatement, EndpointType, StatementKind
from pushql.schema.tracing import F, Projection, ProjectionItem, trace, trace_projection
from pushql.schema.windows import (
    Duration,
    HoppingWindow,
    SessionWindow,
    TimeUnit,
    TumblingWindow,
    WindowSpec,
)

__all__ = [
    "Column",
    "ColumnSchema",
    "ColumnType",
    "parse_column_type",
    "BinaryOp",
    "BinaryOperator",
    "Constant",
    "Expression",
    "Lambda",
    "MemberAccess",
    "MethodCall",
    "NodeKind",
    "Parameter",
    "UnaryOp",
    "UnaryOperator",
    "JoinSpec",
    "QuerySpec",
    "SourceRef",
    "BigInt",
    "Precision",
    "RecordDescriptor",
    "describe",
    "CompiledStatement",
    "EndpointType",
    "StatementKind",
    "F",
    "Projection",
    "ProjectionItem",
    "trace",
    "trace_projection",
    "Duration",
    "HoppingWindow",
    "SessionWindow",
    "TimeUnit",
    "TumblingWindow",
    "WindowSpec",
]
