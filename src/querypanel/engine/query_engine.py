"""Query engine: attached databases, tenant scoping and guarded execution."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from querypanel.adapters.interfaces import DatabaseAdapter, ParamRecord
from querypanel.adapters.models import ExecutionResult
from querypanel.common.cancellation import CancellationToken, raise_if_cancelled
from querypanel.common.logger import get_logger
from querypanel.common.tracing import span
from querypanel.engine.registry import AttachedDatabase, DatabaseRegistry
from querypanel.sql.params import map_generated_params
from querypanel.sql.tenant import apply_tenant_isolation

logger = get_logger("query_engine")


class QueryEngine:
    """Owns the database registry and runs queries through the safety chain.

    Every guarded execution runs, in order: allow-list validation, tenant
    isolation rewrite, adapter dry-run, adapter execution.
    """

    def __init__(self, registry: Optional[DatabaseRegistry] = None):
        self.registry = registry or DatabaseRegistry()

    def attach_database(self, adapter: DatabaseAdapter, metadata: AttachedDatabase) -> None:
        self.registry.attach(adapter, metadata)

    def get_database(self, name: Optional[str] = None) -> DatabaseAdapter:
        return self.registry.get(name).adapter

    def get_database_metadata(self, name: Optional[str] = None) -> Optional[AttachedDatabase]:
        db_name = name or self.registry.default_name
        if not db_name or db_name not in self.registry:
            return None
        return self.registry.get(db_name).metadata

    @property
    def default_database(self) -> Optional[str]:
        return self.registry.default_name

    def map_generated_params(self, descriptors: Optional[Sequence[Mapping[str, Any]]]) -> ParamRecord:
        return map_generated_params(descriptors)

    def validate_and_execute(
        self,
        sql: str,
        params: Optional[ParamRecord],
        database: Optional[str],
        tenant_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """Runs ``sql`` against ``database`` scoped to ``tenant_id``.

        Raises:
            AccessDenied: A referenced table is not allow-listed.
            QueryInvalid: The dry-run failed.
            QueryExecutionFailed: The execution failed.
            OperationCancelled: ``cancel_token`` fired.
        """
        entry = self.registry.get(database)
        adapter, metadata = entry.adapter, entry.metadata

        with span("query_engine.validate_and_execute", {"db.name": metadata.name, "db.dialect": metadata.dialect.value}):
            raise_if_cancelled(cancel_token)
            adapter.check_tables(sql)

            scoped = apply_tenant_isolation(sql, params, metadata.tenant_config(), tenant_id)
            if scoped.sql != sql:
                logger.debug(f"Applied tenant isolation on '{metadata.tenant_field_name}' for database '{metadata.name}'.")

            adapter.validate(scoped.sql, scoped.params, cancel_token=cancel_token)
            result = adapter.execute(scoped.sql, scoped.params, cancel_token=cancel_token)

        logger.info(f"Executed query on '{metadata.name}': {result.row_count} rows.")
        return result

    def execute(
        self,
        sql: str,
        params: Optional[ParamRecord] = None,
        database: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Best-effort execution for previews: returns [] and logs on any failure."""
        try:
            return self.get_database(database).execute(sql, params).rows
        except Exception as e:
            logger.warning(f"Failed to execute SQL locally for database '{database}': {e}")
            return []
