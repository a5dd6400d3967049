"""Ask route: generate SQL remotely, execute it locally, repair on failure."""
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from querypanel.client.api_client import ApiClient
from querypanel.common.cancellation import CancellationToken, raise_if_cancelled
from querypanel.common.errors import ConfigurationError, QueryPanelError, TransportError
from querypanel.common.logger import get_logger, session_context
from querypanel.common.settings import settings
from querypanel.common.tracing import span
from querypanel.engine.query_engine import QueryEngine

logger = get_logger("ask")

NO_ROWS_NOTE = "Query returned no rows."


class ContextDocument(BaseModel):
    source: Optional[str] = None
    page_content: str = Field(default="", alias="pageContent")
    metadata: Optional[Dict[str, Any]] = None
    score: Optional[float] = None

    model_config = ConfigDict(populate_by_name=True)


class ChartEnvelope(BaseModel):
    vega_lite_spec: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class AskOptions(BaseModel):
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    scopes: Optional[List[str]] = None
    database: Optional[str] = None
    last_error: Optional[str] = None
    previous_sql: Optional[str] = None
    max_retry: Optional[int] = None
    chart_max_retries: Optional[int] = None


class AskResponse(BaseModel):
    sql: str
    params: Dict[str, Any] = Field(default_factory=dict)
    param_metadata: List[Dict[str, Any]] = Field(default_factory=list)
    rationale: Optional[str] = None
    dialect: str
    query_id: Optional[str] = None
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    fields: List[str] = Field(default_factory=list)
    chart: ChartEnvelope = Field(default_factory=ChartEnvelope)
    context: Optional[List[ContextDocument]] = None
    attempts: int = 1
    target_db: str


class GeneratedQuery(BaseModel):
    """Body of a /query response."""

    sql: str
    params: Optional[List[Dict[str, Any]]] = None
    dialect: str = ""
    database: Optional[str] = None
    rationale: Optional[str] = None
    query_id: Optional[str] = Field(default=None, alias="queryId")
    context: Optional[List[ContextDocument]] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RetryState(BaseModel):
    """Per-call repair state. Never shared between ``ask`` calls."""

    attempt: int = 0
    last_error: Optional[str] = None
    previous_sql: Optional[str] = None


def anonymize_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return "string"


def anonymize_results(rows: Optional[List[Mapping[str, Any]]]) -> List[Dict[str, str]]:
    """Replaces every value with its coarse type tag before rows leave the process."""
    if not rows:
        return []
    return [{key: anonymize_value(value) for key, value in row.items()} for row in rows]


def ask(
    client: ApiClient,
    engine: QueryEngine,
    question: str,
    options: Optional[AskOptions] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> AskResponse:
    """Generates, executes and (on failure) repairs SQL for ``question``.

    The generation service is called at most ``max_retry + 1`` times. Only
    retryable errors (dry-run or execution failures) trigger another attempt;
    the last error is raised unchanged once the budget is spent.

    Args:
        client (ApiClient): Signed client for the remote query service.
        engine (QueryEngine): Engine holding the attached databases.
        question (str): Natural-language question.
        options (Optional[AskOptions]): Tenant, database and retry options.
        cancel_token (Optional[CancellationToken]): Aborts in-flight calls when cancelled.

    Returns:
        AskResponse: SQL, rows and chart for the successful attempt.
    """
    options = options or AskOptions()
    tenant_id = client.resolve_tenant_id(options.tenant_id)
    session_id = str(uuid.uuid4())
    max_retry = settings.max_retry if options.max_retry is None else options.max_retry
    if max_retry < 0:
        raise ConfigurationError(f"max_retry must be >= 0, got {max_retry}.")
    state = RetryState(last_error=options.last_error, previous_sql=options.previous_sql)

    with session_context(session_id):
        while True:
            raise_if_cancelled(cancel_token)
            with span("ask.attempt", {"ask.attempt": state.attempt + 1, "ask.max_retry": max_retry}):
                generated = _generate(client, engine, question, options, tenant_id, session_id, state, max_retry, cancel_token)

                database = generated.database or options.database or engine.default_database
                if not database:
                    raise ConfigurationError("No database attached. Attach a postgres or clickhouse database first.")

                param_metadata = generated.params or []
                params = engine.map_generated_params(param_metadata)

                try:
                    execution = engine.validate_and_execute(
                        generated.sql, params, database, tenant_id, cancel_token=cancel_token
                    )
                except QueryPanelError as e:
                    state.attempt += 1
                    if not e.is_retryable or state.attempt > max_retry:
                        raise
                    state.last_error = e.message
                    state.previous_sql = generated.sql
                    logger.warning(
                        f"SQL execution failed (attempt {state.attempt}/{max_retry + 1}): {e.message}. Retrying..."
                    )
                    continue

            chart = _build_chart(
                client, question, generated, execution.rows, execution.fields,
                options, tenant_id, session_id, cancel_token,
            )
            return AskResponse(
                sql=generated.sql,
                params=params,
                param_metadata=param_metadata,
                rationale=generated.rationale,
                dialect=generated.dialect,
                query_id=generated.query_id,
                rows=execution.rows,
                fields=execution.fields,
                chart=chart,
                context=generated.context,
                attempts=state.attempt + 1,
                target_db=database,
            )


def _generate(
    client: ApiClient,
    engine: QueryEngine,
    question: str,
    options: AskOptions,
    tenant_id: str,
    session_id: str,
    state: RetryState,
    max_retry: int,
    cancel_token: Optional[CancellationToken],
) -> GeneratedQuery:
    body: Dict[str, Any] = {"question": question}
    if state.last_error:
        body["last_error"] = state.last_error
    if state.previous_sql:
        body["previous_sql"] = state.previous_sql
    if max_retry:
        body["max_retry"] = max_retry

    metadata = engine.get_database_metadata(options.database)
    if metadata is not None:
        body["database"] = metadata.name
        body["dialect"] = metadata.dialect.value
        if metadata.tenant_field_name:
            body["tenant_settings"] = {
                "tenantFieldName": metadata.tenant_field_name,
                "tenantFieldType": metadata.tenant_field_type,
                "enforceTenantIsolation": metadata.enforce_tenant_isolation,
            }

    payload = client.post(
        "/query", body, tenant_id,
        user_id=options.user_id, scopes=options.scopes,
        session_id=session_id, cancel_token=cancel_token,
    )
    try:
        return GeneratedQuery.model_validate(payload or {})
    except ValidationError as e:
        raise TransportError(f"Malformed response from /query: {e}", details=payload) from e


def _build_chart(
    client: ApiClient,
    question: str,
    generated: GeneratedQuery,
    rows: List[Dict[str, Any]],
    fields: List[str],
    options: AskOptions,
    tenant_id: str,
    session_id: str,
    cancel_token: Optional[CancellationToken],
) -> ChartEnvelope:
    if not rows:
        return ChartEnvelope(vega_lite_spec=None, notes=NO_ROWS_NOTE)

    chart_budget = settings.chart_max_retries if options.chart_max_retries is None else options.chart_max_retries
    response = client.post(
        "/chart",
        {
            "question": question,
            "sql": generated.sql,
            "rationale": generated.rationale,
            "fields": fields,
            "rows": anonymize_results(rows),
            "max_retries": chart_budget,
            "query_id": generated.query_id,
        },
        tenant_id,
        user_id=options.user_id, scopes=options.scopes,
        session_id=session_id, cancel_token=cancel_token,
    ) or {}

    spec = response.get("chart")
    return ChartEnvelope(
        vega_lite_spec={**spec, "data": {"values": rows}} if spec else None,
        notes=response.get("notes"),
    )
