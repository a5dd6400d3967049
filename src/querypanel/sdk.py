"""Public SDK facade.

Example::

    sdk = QueryPanelSDK(base_url, private_key, organization_id, default_tenant_id="t-123")
    sdk.attach_postgres("analytics", client_fn, tenant_field_name="tenant_id")
    sdk.sync_schema("analytics")
    result = sdk.ask("Top 10 customers by revenue", AskOptions(max_retry=2))
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import httpx

from querypanel.adapters.clickhouse import ClickHouseAdapter, ClickHouseClientFn
from querypanel.adapters.interfaces import DatabaseAdapter
from querypanel.adapters.models import SchemaIntrospection
from querypanel.adapters.postgres import PostgresAdapter, PostgresClientFn
from querypanel.client.api_client import ApiClient
from querypanel.common.cancellation import CancellationToken
from querypanel.common.settings import settings
from querypanel.engine.query_engine import QueryEngine
from querypanel.engine.registry import AttachedDatabase
from querypanel.routes import ingest as ingest_route
from querypanel.routes import query as query_route


class QueryPanelSDK:
    """Attaches databases and runs natural-language queries against them.

    Connection arguments default to the ``QUERYPANEL_*`` settings.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        private_key: Optional[str] = None,
        organization_id: Optional[str] = None,
        default_tenant_id: Optional[str] = None,
        additional_headers: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.Client] = None,
        engine: Optional[QueryEngine] = None,
    ):
        self.client = ApiClient(
            base_url or settings.base_url,
            private_key or settings.resolve_private_key(),
            organization_id or settings.organization_id,
            default_tenant_id=default_tenant_id or settings.default_tenant_id,
            additional_headers=additional_headers,
            timeout=settings.http_timeout_sec,
            http_client=http_client,
        )
        self.engine = engine or QueryEngine()

    def attach_postgres(
        self,
        name: str,
        client_fn: PostgresClientFn,
        database: Optional[str] = None,
        default_schema: str = "public",
        kind: str = "postgres",
        allowed_tables: Optional[List[str]] = None,
        **metadata: Any,
    ) -> None:
        adapter = PostgresAdapter(
            client_fn,
            database=database or "postgres",
            default_schema=default_schema,
            kind=kind,
            allowed_tables=allowed_tables,
        )
        self.attach_database(name, adapter, allowed_tables=allowed_tables, **metadata)

    def attach_clickhouse(
        self,
        name: str,
        client_fn: ClickHouseClientFn,
        database: Optional[str] = None,
        default_format: str = "JSONEachRow",
        kind: str = "clickhouse",
        allowed_tables: Optional[List[str]] = None,
        clickhouse_settings: Optional[Dict[str, Any]] = None,
        **metadata: Any,
    ) -> None:
        adapter = ClickHouseAdapter(
            client_fn,
            database=database or "default",
            default_format=default_format,
            kind=kind,
            allowed_tables=allowed_tables,
            settings=clickhouse_settings,
        )
        self.attach_database(name, adapter, allowed_tables=allowed_tables, **metadata)

    def attach_database(self, name: str, adapter: DatabaseAdapter, **metadata: Any) -> None:
        """Attaches a custom adapter.

        Keyword arguments are ``AttachedDatabase`` fields: description, tags,
        tenant_field_name, tenant_field_type, enforce_tenant_isolation, allowed_tables.
        """
        self.engine.attach_database(
            adapter,
            AttachedDatabase(name=name, dialect=adapter.get_dialect(), **metadata),
        )

    def introspect(
        self,
        database: Optional[str] = None,
        tables: Optional[Iterable[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SchemaIntrospection:
        return self.engine.get_database(database).introspect(tables, cancel_token=cancel_token)

    def sync_schema(
        self,
        database: str,
        options: Optional[ingest_route.SchemaSyncOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ingest_route.IngestResponse:
        return ingest_route.sync_schema(self.client, self.engine, database, options, cancel_token)

    def ask(
        self,
        question: str,
        options: Optional[query_route.AskOptions] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> query_route.AskResponse:
        return query_route.ask(self.client, self.engine, question, options, cancel_token)

    def execute(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        database: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Best-effort local execution; returns [] on failure."""
        return self.engine.execute(sql, params, database)

    def close(self) -> None:
        self.client.close()
        for name in self.engine.registry.names():
            self.engine.get_database(name).close()
