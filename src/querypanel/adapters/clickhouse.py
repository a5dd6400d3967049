"""Columnar (ClickHouse-family) adapter over a caller-supplied client function."""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel

from querypanel.adapters.interfaces import DatabaseAdapter, ParamRecord
from querypanel.adapters.models import (
    ColumnSchema,
    DatabaseIdentifier,
    Dialect,
    ExecutionResult,
    SchemaIntrospection,
    TableSchema,
    sanitize,
)
from querypanel.common.cancellation import CancellationToken
from querypanel.common.errors import QueryExecutionFailed, QueryInvalid, QueryPanelError
from querypanel.common.logger import get_logger
from querypanel.common.sandbox import run_cancellable
from querypanel.common.tracing import span
from querypanel.sql.allowlist import NormalizedTableFilter
from querypanel.sql.types import (
    extract_fixed_string_length,
    extract_precision_scale,
    is_nullable_type,
    parse_key_expression,
    unwrap_type_modifiers,
)

logger = get_logger("clickhouse_adapter")

TABLES_QUERY = """SELECT name, engine, comment, primary_key
       FROM system.tables
       WHERE database = {db:String}%s
       ORDER BY name"""

COLUMNS_QUERY = """SELECT table, name, type, position, comment, is_in_primary_key
       FROM system.columns
       WHERE database = {db:String}%s
       ORDER BY table, position"""


class ClickHouseQuery(BaseModel):
    """Structured request handed to the ClickHouse client function."""

    query: str
    format: Optional[str] = None
    query_params: Optional[Dict[str, Any]] = None
    settings: Optional[Dict[str, Any]] = None


# client_fn(ClickHouseQuery) -> list of rows, or an object whose json() returns rows or {"data": rows}
ClickHouseClientFn = Callable[[ClickHouseQuery], Any]


class ClickHouseAdapter(DatabaseAdapter):
    """Adapter for ClickHouse-family databases.

    Tables are not schema qualified: the allow-list keeps bare names and
    introspection reports the database name as the schema of every table.
    Named parameters are passed through as ``query_params`` for the
    ``{name:Type}`` placeholder syntax.
    """

    def __init__(
        self,
        client_fn: ClickHouseClientFn,
        database: str = "default",
        default_format: str = "JSONEachRow",
        kind: str = "clickhouse",
        allowed_tables: Optional[Iterable[str]] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.client_fn = client_fn
        self.database = database
        self.default_format = default_format
        self.kind = kind
        self.settings = settings
        self.allowed_tables: Optional[NormalizedTableFilter] = None
        if allowed_tables is not None:
            self.allowed_tables = NormalizedTableFilter.columnar(allowed_tables)

    def get_dialect(self) -> Dialect:
        return Dialect.CLICKHOUSE

    def check_tables(self, sql: str) -> None:
        if self.allowed_tables:
            self.allowed_tables.check_sql(sql)

    def execute(
        self,
        sql: str,
        params: Optional[ParamRecord] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        self.check_tables(sql)
        with span("clickhouse.execute", {"db.name": self.database, "db.system": self.kind}):
            try:
                rows = self.query(sql, params=params, cancel_token=cancel_token)
            except QueryPanelError:
                raise
            except Exception as e:
                raise QueryExecutionFailed(str(e), details={"sql": sql}) from e
        return ExecutionResult.from_rows(rows)

    def validate(
        self,
        sql: str,
        params: Optional[ParamRecord] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        try:
            self.query(f"EXPLAIN {sql}", params=params, cancel_token=cancel_token)
        except QueryPanelError:
            raise
        except Exception as e:
            raise QueryInvalid(str(e), details={"sql": sql}) from e

    def introspect(
        self,
        tables: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SchemaIntrospection:
        table_filter = self._resolve_filter(tables)
        query_params: Dict[str, Any] = {"db": self.database}
        table_clause = ""
        column_clause = ""
        if table_filter:
            query_params["tables"] = table_filter.names()
            table_clause = " AND name IN {tables:Array(String)}"
            column_clause = " AND table IN {tables:Array(String)}"

        logger.info(f"Introspecting clickhouse database '{self.database}' ({len(table_filter)} table filter entries).")
        with span("clickhouse.introspect", {"db.name": self.database}):
            try:
                table_rows = self.query(TABLES_QUERY % table_clause, params=query_params, cancel_token=cancel_token)
                column_rows = self.query(COLUMNS_QUERY % column_clause, params=query_params, cancel_token=cancel_token)
            except QueryPanelError:
                raise
            except Exception as e:
                raise QueryExecutionFailed(f"Schema introspection failed: {e}") from e

        columns_by_table: Dict[str, List[ColumnSchema]] = {}
        for row in column_rows:
            columns_by_table.setdefault(row["table"], []).append(transform_column_row(row))

        schemas: List[TableSchema] = []
        for row in table_rows:
            columns = columns_by_table.get(row["name"], [])
            key_columns = parse_key_expression(row.get("primary_key"))
            for column in columns:
                column.is_primary_key = column.is_primary_key or column.name in key_columns
            schemas.append(
                TableSchema(
                    name=row["name"],
                    schema_name=self.database,
                    type=as_table_type(row.get("engine")),
                    comment=sanitize(row.get("comment")),
                    columns=columns,
                )
            )

        return SchemaIntrospection(
            db=DatabaseIdentifier(kind=self.kind, name=self.database),
            tables=schemas,
        )

    def query(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        format: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[Dict[str, Any]]:
        """Sends one request through the client function and returns its rows."""
        request = ClickHouseQuery(
            query=sql,
            format=format or self.default_format,
            query_params=params or None,
            settings=settings or self.settings,
        )
        result = run_cancellable(lambda: self.client_fn(request), cancel_token, "clickhouse query")
        return extract_rows(result)

    def _resolve_filter(self, tables: Optional[Iterable[str]]) -> NormalizedTableFilter:
        if tables is None:
            return self.allowed_tables or NormalizedTableFilter.columnar([])
        requested = NormalizedTableFilter.columnar(tables)
        if self.allowed_tables:
            self.allowed_tables.validate(requested)
        return requested


def extract_rows(result: Any) -> List[Dict[str, Any]]:
    if isinstance(result, list):
        return result
    json_fn = getattr(result, "json", None)
    if callable(json_fn):
        return normalize_payload(json_fn())
    return []


def normalize_payload(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping) and isinstance(payload.get("data"), list):
        return payload["data"]
    return []


def transform_column_row(row: Mapping[str, Any]) -> ColumnSchema:
    raw_type = str(row["type"])
    precision, scale = extract_precision_scale(raw_type)
    return ColumnSchema(
        name=row["name"],
        type=unwrap_type_modifiers(raw_type),
        raw_type=raw_type,
        is_primary_key=bool(_to_number(row.get("is_in_primary_key"))),
        comment=sanitize(row.get("comment")),
        nullable=is_nullable_type(raw_type),
        precision=precision,
        scale=scale,
        fixed_length=extract_fixed_string_length(raw_type),
    )


def as_table_type(engine: Any) -> str:
    if isinstance(engine, str):
        normalized = engine.lower()
        if "materializedview" in normalized:
            return "materialized_view"
        if "view" in normalized:
            return "view"
    return "table"


def _to_number(value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value))
    except ValueError:
        return None
