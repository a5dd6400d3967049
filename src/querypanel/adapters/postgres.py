"""Relational (Postgres) adapter over a caller-supplied client function."""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

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
from querypanel.sql.params import convert_named_to_positional

logger = get_logger("postgres_adapter")


class PostgresQueryResult(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    fields: List[Any] = Field(default_factory=list)


# client_fn(sql, positional_params) -> PostgresQueryResult (or any object/mapping with rows and fields)
PostgresClientFn = Callable[[str, Optional[List[Any]]], Any]


class PostgresAdapter(DatabaseAdapter):
    """Adapter for Postgres-compatible databases.

    Named parameters are converted to the ``$1, $2, ...`` positional form before
    being handed to ``client_fn``. Introspection reads tables and columns from
    the system catalogs with one query each.
    """

    def __init__(
        self,
        client_fn: PostgresClientFn,
        database: str = "postgres",
        default_schema: str = "public",
        kind: str = "postgres",
        allowed_tables: Optional[Iterable[str]] = None,
    ):
        self.client_fn = client_fn
        self.database = database
        self.default_schema = default_schema
        self.kind = kind
        self.allowed_tables: Optional[NormalizedTableFilter] = None
        if allowed_tables is not None:
            self.allowed_tables = NormalizedTableFilter.relational(allowed_tables, default_schema)

    def get_dialect(self) -> Dialect:
        return Dialect.POSTGRES

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
        positional = convert_named_to_positional(params) if params else None

        with span("postgres.execute", {"db.name": self.database, "db.system": self.kind}):
            try:
                result = self._call(sql, positional, cancel_token, "postgres execute")
            except QueryPanelError:
                raise
            except Exception as e:
                raise QueryExecutionFailed(str(e), details={"sql": sql}) from e

        rows = [_as_dict(row) for row in _read(result, "rows") or []]
        fields = [_field_name(f) for f in _read(result, "fields") or []]
        return ExecutionResult.from_rows(rows, fields or None)

    def validate(
        self,
        sql: str,
        params: Optional[ParamRecord] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> None:
        positional = convert_named_to_positional(params) if params else None
        try:
            self._call(f"EXPLAIN {sql}", positional, cancel_token, "postgres validate")
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
        logger.info(f"Introspecting postgres database '{self.database}' ({len(table_filter)} table filter entries).")

        with span("postgres.introspect", {"db.name": self.database}):
            try:
                table_rows = _read(self._call(build_tables_query(table_filter), None, cancel_token, "postgres introspect"), "rows") or []
                column_rows = _read(self._call(build_columns_query(table_filter), None, cancel_token, "postgres introspect"), "rows") or []
            except QueryPanelError:
                raise
            except Exception as e:
                raise QueryExecutionFailed(f"Schema introspection failed: {e}") from e

        tables_by_key: Dict[str, TableSchema] = {}
        for raw in table_rows:
            row = _as_dict(raw)
            table = TableSchema(
                name=row["table_name"],
                schema_name=row["schema_name"],
                type=as_table_type(str(row.get("table_type") or "")),
                comment=sanitize(row.get("comment")),
            )
            tables_by_key[f"{table.schema_name}.{table.name}"] = table

        for raw in column_rows:
            row = _as_dict(raw)
            table = tables_by_key.get(f"{row['table_schema']}.{row['table_name']}")
            if table is None:
                continue
            table.columns.append(
                ColumnSchema(
                    name=row["column_name"],
                    type=row["data_type"],
                    raw_type=row.get("udt_name"),
                    is_primary_key=bool(row.get("is_primary_key")),
                    comment=sanitize(row.get("description")),
                )
            )

        ordered = sorted(tables_by_key.values(), key=lambda t: (t.schema_name, t.name))
        return SchemaIntrospection(
            db=DatabaseIdentifier(kind=self.kind, name=self.database),
            tables=ordered,
        )

    def close(self) -> None:
        close = getattr(self.client_fn, "close", None)
        if callable(close):
            close()

    def _resolve_filter(self, tables: Optional[Iterable[str]]) -> NormalizedTableFilter:
        if tables is None:
            return self.allowed_tables or NormalizedTableFilter.relational([], self.default_schema)
        requested = NormalizedTableFilter.relational(tables, self.default_schema)
        if self.allowed_tables:
            self.allowed_tables.validate(requested)
        return requested

    def _call(
        self,
        sql: str,
        params: Optional[List[Any]],
        cancel_token: Optional[CancellationToken],
        description: str,
    ):
        return run_cancellable(lambda: self.client_fn(sql, params), cancel_token, description)


def build_tables_query(table_filter: NormalizedTableFilter) -> str:
    filter_clause = build_filter_clause(table_filter, "n.nspname", "c.relname")
    return f"""SELECT
    c.relname AS table_name,
    n.nspname AS schema_name,
    CASE c.relkind
      WHEN 'r' THEN 'table'
      WHEN 'v' THEN 'view'
      WHEN 'm' THEN 'materialized_view'
      ELSE c.relkind::text
    END AS table_type,
    obj_description(c.oid) AS comment
  FROM pg_class c
  JOIN pg_namespace n ON n.oid = c.relnamespace
  WHERE n.nspname NOT IN ('pg_catalog', 'information_schema')
    AND c.relkind IN ('r', 'v', 'm')
    {filter_clause}
  ORDER BY n.nspname, c.relname;"""


def build_columns_query(table_filter: NormalizedTableFilter) -> str:
    filter_clause = build_filter_clause(table_filter, "cols.table_schema", "cols.table_name")
    return f"""SELECT
    cols.table_name,
    cols.table_schema,
    cols.column_name,
    cols.data_type,
    cols.udt_name,
    pgd.description,
    EXISTS(
      SELECT 1
      FROM information_schema.table_constraints tc
      JOIN information_schema.key_column_usage kcu
        ON tc.constraint_name = kcu.constraint_name
       AND tc.table_schema = kcu.table_schema
      WHERE tc.constraint_type = 'PRIMARY KEY'
        AND tc.table_schema = cols.table_schema
        AND tc.table_name = cols.table_name
        AND kcu.column_name = cols.column_name
    ) AS is_primary_key
  FROM information_schema.columns cols
  LEFT JOIN pg_catalog.pg_namespace n ON n.nspname = cols.table_schema
  LEFT JOIN pg_catalog.pg_class c
    ON c.relname = cols.table_name
   AND c.relnamespace = n.oid
   AND c.relkind IN ('r', 'v', 'm')
  LEFT JOIN pg_catalog.pg_attribute attr
    ON attr.attrelid = c.oid
   AND attr.attname = cols.column_name
  LEFT JOIN pg_catalog.pg_description pgd
    ON pgd.objoid = attr.attrelid AND pgd.objsubid = attr.attnum
  WHERE cols.table_schema NOT IN ('pg_catalog', 'information_schema')
    {filter_clause}
  ORDER BY cols.table_schema, cols.table_name, cols.ordinal_position;"""


def build_filter_clause(table_filter: NormalizedTableFilter, schema_expr: str, table_expr: str) -> str:
    # Entries are restricted to plain identifiers when the filter is built.
    if not table_filter:
        return ""
    clauses = [
        f"({schema_expr} = '{ref.schema_name}' AND {table_expr} = '{ref.name}')"
        for ref in table_filter
    ]
    return f"AND ({' OR '.join(clauses)})"


def as_table_type(value: str) -> str:
    normalized = value.lower()
    if "view" in normalized:
        return "materialized_view" if "materialized" in normalized else "view"
    return "table"


def _read(result: Any, name: str) -> Any:
    if isinstance(result, Mapping):
        return result.get(name)
    return getattr(result, name, None)


def _as_dict(row: Any) -> Dict[str, Any]:
    if isinstance(row, Mapping):
        return dict(row)
    mapping = getattr(row, "_mapping", None)
    if mapping is not None:
        return dict(mapping)
    return dict(vars(row))


def _field_name(field: Any) -> str:
    if isinstance(field, str):
        return field
    if isinstance(field, Mapping):
        return str(field["name"])
    return str(getattr(field, "name"))
