from __future__ import annotations

import threading
from typing import Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from querypanel.adapters.interfaces import DatabaseAdapter
from querypanel.adapters.models import Dialect
from querypanel.common.errors import ConfigurationError
from querypanel.common.logger import get_logger
from querypanel.sql.tenant import TenantConfig

logger = get_logger("registry")


class AttachedDatabase(BaseModel):
    """Metadata of one attached database. Immutable once attached."""

    name: str
    dialect: Dialect
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    tenant_field_name: Optional[str] = None
    tenant_field_type: str = "String"
    enforce_tenant_isolation: Optional[bool] = None
    allowed_tables: Optional[List[str]] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def default_enforcement(cls, data):
        if isinstance(data, dict) and data.get("tenant_field_name") and data.get("enforce_tenant_isolation") is None:
            data = {**data, "enforce_tenant_isolation": True}
        return data

    def tenant_config(self) -> TenantConfig:
        return TenantConfig(
            dialect=self.dialect,
            field_name=self.tenant_field_name,
            field_type=self.tenant_field_type or "String",
            enforce=self.enforce_tenant_isolation,
        )


class Attachment(NamedTuple):
    adapter: DatabaseAdapter
    metadata: AttachedDatabase


class DatabaseRegistry:
    """Attached databases keyed by name.

    Write-once per name: attaching an existing name raises. Entries are never
    mutated after insertion, so lookups do not take the lock.
    """

    def __init__(self):
        self._entries: Dict[str, Attachment] = {}
        self._default: Optional[str] = None
        self._write_lock = threading.Lock()

    def attach(self, adapter: DatabaseAdapter, metadata: AttachedDatabase) -> None:
        if adapter.get_dialect() != metadata.dialect:
            raise ConfigurationError(
                f"Database '{metadata.name}' declares dialect '{metadata.dialect.value}' "
                f"but the adapter speaks '{adapter.get_dialect().value}'."
            )
        with self._write_lock:
            if metadata.name in self._entries:
                raise ConfigurationError(f"Database '{metadata.name}' is already attached.")
            self._entries = {**self._entries, metadata.name: Attachment(adapter, metadata)}
            if self._default is None:
                self._default = metadata.name
        logger.info(f"Attached database '{metadata.name}' ({metadata.dialect.value}).")

    @property
    def default_name(self) -> Optional[str]:
        return self._default

    def names(self) -> List[str]:
        return list(self._entries.keys())

    def get(self, name: Optional[str] = None) -> Attachment:
        db_name = name or self._default
        if not db_name:
            raise ConfigurationError("No database attached.")
        entry = self._entries.get(db_name)
        if entry is None:
            attached = ", ".join(self._entries.keys())
            raise ConfigurationError(f"Database '{db_name}' not found. Attached: {attached}")
        return entry

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)
