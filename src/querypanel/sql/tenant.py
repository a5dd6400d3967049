"""Tenant isolation rewriting.

``apply_tenant_isolation`` is a pure function: it locates the first ``WHERE``
keyword (if any) and deterministically produces a new SQL string plus a new
parameter mapping. The caller's mapping is never mutated.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from querypanel.adapters.models import Dialect
from querypanel.common.errors import ConfigurationError
from querypanel.sql.tokenizer import PUNCT, QUOTED, WORD, Token, tokenize

_NUMERIC_KEY_RE = re.compile(r"^\d+$")


class TenantConfig(BaseModel):
    """Tenant scoping settings of one attached database."""

    dialect: Dialect
    field_name: Optional[str] = None
    field_type: str = "String"
    enforce: Optional[bool] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_active(self) -> bool:
        return bool(self.field_name) and self.enforce is not False


class TenantRewrite(BaseModel):
    sql: str
    params: Dict[str, Any]


def escape_literal(value: str) -> str:
    """Escapes a value for use inside a single-quoted SQL literal."""
    if "\x00" in value:
        raise ConfigurationError("Tenant id must not contain NUL characters.")
    return value.replace("'", "''")


def build_predicate(tenant: TenantConfig, tenant_id: str) -> str:
    field = tenant.field_name
    if tenant.dialect == Dialect.CLICKHOUSE:
        return f"{field} = {{{field}:{tenant.field_type or 'String'}}}"
    return f"{field} = '{escape_literal(tenant_id)}'"


def _has_late_bound_slot(params: Mapping[str, Any], field: str) -> bool:
    placeholder = f"<{field}>"
    return any(
        _NUMERIC_KEY_RE.match(key) and value == placeholder
        for key, value in params.items()
    )


def _mentions_field(tokens: List[Token], field: str) -> bool:
    target = field.lower()
    return any(tok.kind in (WORD, QUOTED) and tok.value.lower() == target for tok in tokens)


def _first_where(tokens: List[Token]) -> Optional[Token]:
    return next((tok for tok in tokens if tok.upper == "WHERE"), None)


def apply_tenant_isolation(
    sql: str,
    params: Optional[Mapping[str, Any]],
    tenant: Optional[TenantConfig],
    tenant_id: str,
) -> TenantRewrite:
    """Scopes ``sql`` to ``tenant_id``.

    Steps:
    1. No tenant field, or isolation disabled: returned unchanged.
    2. Columnar queries always bind the tenant id under the field name. Relational
       queries bind it only when a positional slot holds a ``<field>`` placeholder.
    3. SQL that already names the field as an identifier (case-insensitive) is
       assumed scoped.
    4. Otherwise the predicate is spliced after the first ``WHERE`` keyword joined
       with ``AND``, or appended as a new ``WHERE`` clause after the last token.

    Keywords and identifiers are located with the tokenizer, so text inside
    string literals, quoted identifiers and comments is never matched or
    spliced into.

    Args:
        sql (str): The SQL to scope.
        params (Optional[Mapping[str, Any]]): Named parameters of the query.
        tenant (Optional[TenantConfig]): Tenant settings of the target database.
        tenant_id (str): The caller's tenant.

    Returns:
        TenantRewrite: The scoped SQL and a fresh parameter mapping.
    """
    new_params: Dict[str, Any] = dict(params or {})
    if tenant is None or not tenant.is_active:
        return TenantRewrite(sql=sql, params=new_params)

    if not tenant_id:
        raise ConfigurationError(f"A tenant id is required to query data scoped by '{tenant.field_name}'.")

    field = tenant.field_name
    if tenant.dialect == Dialect.CLICKHOUSE or _has_late_bound_slot(new_params, field):
        new_params[field] = tenant_id

    tokens = tokenize(sql)
    if _mentions_field(tokens, field):
        return TenantRewrite(sql=sql, params=new_params)

    predicate = build_predicate(tenant, tenant_id)

    where = _first_where(tokens)
    if where is not None:
        rest = sql[where.end:].lstrip()
        rewritten = f"{sql[:where.start]}{where.value} {predicate} AND {rest}"
        return TenantRewrite(sql=rewritten, params=new_params)

    return TenantRewrite(sql=_append_where(sql, tokens, predicate), params=new_params)


def _append_where(sql: str, tokens: List[Token], predicate: str) -> str:
    body = tokens
    while body and body[-1].kind == PUNCT and body[-1].value == ";":
        body = body[:-1]
    body_end = body[-1].end if body else 0
    tail = sql[body_end:]

    if not tail.replace(";", "").strip():
        terminator = ";" if ";" in tail else ""
        return f"{sql[:body_end]} WHERE {predicate}{terminator}"
    # Trailing comments stay after the clause.
    return f"{sql[:body_end]} WHERE {predicate}{tail}"
