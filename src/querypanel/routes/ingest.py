"""Schema sync route: introspect an attached database and push it to /ingest."""
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from querypanel.adapters.models import Dialect, SchemaIntrospection
from querypanel.client.api_client import ApiClient
from querypanel.common.cancellation import CancellationToken
from querypanel.common.errors import TransportError
from querypanel.common.logger import get_logger, session_context
from querypanel.common.tracing import span
from querypanel.engine.query_engine import QueryEngine
from querypanel.engine.registry import AttachedDatabase

logger = get_logger("ingest")


class SchemaSyncOptions(BaseModel):
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    scopes: Optional[List[str]] = None
    tables: Optional[List[str]] = None
    force_reindex: bool = False


class IngestResponse(BaseModel):
    success: bool
    message: str = ""
    chunks: int = 0
    chunks_with_annotations: int = 0
    schema_id: Optional[str] = None
    schema_hash: Optional[str] = None
    drift_detected: Optional[bool] = None
    skipped: Optional[bool] = None

    model_config = ConfigDict(extra="ignore")


def build_schema_request(
    database: str,
    dialect: Dialect,
    introspection: SchemaIntrospection,
    metadata: Optional[AttachedDatabase] = None,
) -> Dict[str, Any]:
    """Builds the /ingest payload from an introspection snapshot."""
    tables = [
        {
            "table_name": table.name,
            "description": table.comment or f"Table {table.name}",
            "columns": [
                {
                    "name": column.name,
                    "data_type": column.raw_type or column.type,
                    "is_primary_key": bool(column.is_primary_key),
                    "description": column.comment or "",
                }
                for column in table.columns
            ],
        }
        for table in introspection.tables
    ]
    request: Dict[str, Any] = {
        "database": database,
        "dialect": dialect.value,
        "tables": tables,
    }
    if metadata is not None and metadata.tenant_field_name and metadata.enforce_tenant_isolation is not None:
        request["tenant_settings"] = {
            "tenantFieldName": metadata.tenant_field_name,
            "tenantFieldType": metadata.tenant_field_type,
            "enforceTenantIsolation": metadata.enforce_tenant_isolation,
        }
    return request


def sync_schema(
    client: ApiClient,
    engine: QueryEngine,
    database: str,
    options: Optional[SchemaSyncOptions] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> IngestResponse:
    options = options or SchemaSyncOptions()
    tenant_id = client.resolve_tenant_id(options.tenant_id)
    adapter = engine.get_database(database)
    metadata = engine.get_database_metadata(database)
    session_id = str(uuid.uuid4())

    with session_context(session_id), span("ingest.sync_schema", {"db.name": database}):
        introspection = adapter.introspect(options.tables, cancel_token=cancel_token)
        payload = build_schema_request(database, adapter.get_dialect(), introspection, metadata)
        if options.force_reindex:
            payload["force_reindex"] = True

        logger.info(f"Syncing {len(payload['tables'])} tables of '{database}' to the query service.")
        response = client.post(
            "/ingest", payload, tenant_id,
            user_id=options.user_id, scopes=options.scopes,
            session_id=session_id, cancel_token=cancel_token,
        )

    try:
        return IngestResponse.model_validate(response or {})
    except ValidationError as e:
        raise TransportError(f"Malformed response from /ingest: {e}", details=response) from e
