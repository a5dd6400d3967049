from querypanel.adapters.clickhouse import ClickHouseAdapter, ClickHouseQuery
from querypanel.adapters.interfaces import DatabaseAdapter
from querypanel.adapters.models import (
    ColumnSchema,
    Dialect,
    ExecutionResult,
    SchemaIntrospection,
    TableSchema,
)
from querypanel.adapters.postgres import PostgresAdapter, PostgresQueryResult
from querypanel.common.cancellation import CancellationToken
from querypanel.common.errors import (
    AccessDenied,
    ConfigurationError,
    OperationCancelled,
    QueryExecutionFailed,
    QueryInvalid,
    QueryPanelError,
    TransportError,
)
from querypanel.engine.query_engine import QueryEngine
from querypanel.engine.registry import AttachedDatabase
from querypanel.routes.ingest import IngestResponse, SchemaSyncOptions
from querypanel.routes.query import AskOptions, AskResponse, ChartEnvelope, anonymize_results
from querypanel.sdk import QueryPanelSDK
from querypanel.sql.tenant import apply_tenant_isolation
from querypanel.sql.tokenizer import TableReference, extract_table_references

__all__ = [
    "AccessDenied",
    "AskOptions",
    "AskResponse",
    "AttachedDatabase",
    "CancellationToken",
    "ChartEnvelope",
    "ClickHouseAdapter",
    "ClickHouseQuery",
    "ColumnSchema",
    "ConfigurationError",
    "DatabaseAdapter",
    "Dialect",
    "ExecutionResult",
    "IngestResponse",
    "OperationCancelled",
    "PostgresAdapter",
    "PostgresQueryResult",
    "QueryEngine",
    "QueryExecutionFailed",
    "QueryInvalid",
    "QueryPanelError",
    "QueryPanelSDK",
    "SchemaIntrospection",
    "SchemaSyncOptions",
    "TableReference",
    "TableSchema",
    "TransportError",
    "anonymize_results",
    "apply_tenant_isolation",
    "extract_table_references",
]
