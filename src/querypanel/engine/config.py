"""YAML attachment profiles.

Example ``configs/databases.yaml``::

    version: 1
    databases:
      - name: analytics
        dialect: postgres
        url: ${env:ANALYTICS_DATABASE_URL}
        tenant_field_name: tenant_id
        allowed_tables: [public.orders, public.customers]
"""
from __future__ import annotations

import os
import pathlib
import re
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from querypanel.adapters.connectors import SqlAlchemyClient
from querypanel.adapters.models import Dialect
from querypanel.adapters.postgres import PostgresAdapter
from querypanel.common.errors import ConfigurationError
from querypanel.common.logger import get_logger
from querypanel.common.settings import settings
from querypanel.engine.query_engine import QueryEngine
from querypanel.engine.registry import AttachedDatabase

logger = get_logger("config")

_ENV_REF_RE = re.compile(r"^\$\{env:([A-Za-z_][A-Za-z0-9_]*)\}$")


class AttachmentProfile(BaseModel):
    """One database entry of the attachment file."""

    name: str
    dialect: Dialect
    url: Optional[str] = None
    database: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    tenant_field_name: Optional[str] = None
    tenant_field_type: str = "String"
    enforce_tenant_isolation: Optional[bool] = None
    allowed_tables: Optional[List[str]] = None
    default_schema: str = "public"

    def to_metadata(self) -> AttachedDatabase:
        return AttachedDatabase(
            name=self.name,
            dialect=self.dialect,
            description=self.description,
            tags=self.tags,
            tenant_field_name=self.tenant_field_name,
            tenant_field_type=self.tenant_field_type,
            enforce_tenant_isolation=self.enforce_tenant_isolation,
            allowed_tables=self.allowed_tables,
        )


class AttachmentFileConfig(BaseModel):
    """File-level schema for databases.yaml."""

    version: int = Field(1, description="Schema version")
    databases: List[AttachmentProfile]


def resolve_env_refs(value: Any) -> Any:
    """Replaces ``${env:VAR}`` strings with the environment value, recursively."""
    if isinstance(value, str):
        match = _ENV_REF_RE.match(value.strip())
        if not match:
            return value
        resolved = os.environ.get(match.group(1))
        if resolved is None:
            raise ConfigurationError(f"Environment variable '{match.group(1)}' referenced in config is not set.")
        return resolved
    if isinstance(value, list):
        return [resolve_env_refs(v) for v in value]
    if isinstance(value, dict):
        return {k: resolve_env_refs(v) for k, v in value.items()}
    return value


def load_attachments(path: Optional[pathlib.Path] = None) -> List[AttachmentProfile]:
    """Loads attachment profiles from YAML.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    target_path = pathlib.Path(path or settings.databases_config_path)
    if not target_path.exists():
        raise ConfigurationError(f"Database config not found: {target_path}")

    try:
        raw = yaml.safe_load(target_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse YAML from {target_path}: {e}") from e

    try:
        file_config = AttachmentFileConfig.model_validate(resolve_env_refs(raw))
    except ValidationError as e:
        raise ConfigurationError(f"Database Configuration Invalid: {e}") from e

    names = [p.name for p in file_config.databases]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate database names in {target_path}: {', '.join(duplicates)}")
    return file_config.databases


def build_query_engine(profiles: List[AttachmentProfile]) -> QueryEngine:
    """Attaches every profile to a new engine using SQLAlchemy-backed clients.

    Only relational profiles can be built from a URL; columnar databases are
    attached programmatically with their own client function.
    """
    engine = QueryEngine()
    for profile in profiles:
        if profile.dialect != Dialect.POSTGRES:
            raise ConfigurationError(
                f"Database '{profile.name}': dialect '{profile.dialect.value}' cannot be attached from config; "
                "attach it with a client function instead."
            )
        if not profile.url:
            raise ConfigurationError(f"Database '{profile.name}' has no url.")
        adapter = PostgresAdapter(
            SqlAlchemyClient.from_url(profile.url),
            database=profile.database or profile.name,
            default_schema=profile.default_schema,
            allowed_tables=profile.allowed_tables,
        )
        engine.attach_database(adapter, profile.to_metadata())
    return engine
