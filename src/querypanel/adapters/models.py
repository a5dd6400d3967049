from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Dialect(str, Enum):
    POSTGRES = "postgres"
    CLICKHOUSE = "clickhouse"


class ColumnSchema(BaseModel):
    name: str
    type: str
    raw_type: Optional[str] = None
    is_primary_key: bool = False
    comment: Optional[str] = None
    nullable: Optional[bool] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    fixed_length: Optional[int] = None


class TableSchema(BaseModel):
    name: str
    schema_name: str
    type: str = "table"  # table | view | materialized_view
    comment: Optional[str] = None
    columns: List[ColumnSchema] = Field(default_factory=list)


class DatabaseIdentifier(BaseModel):
    kind: str
    name: str


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SchemaIntrospection(BaseModel):
    """Snapshot of a database catalog. Built fresh on every introspect call."""

    db: DatabaseIdentifier
    tables: List[TableSchema] = Field(default_factory=list)
    introspected_at: str = Field(default_factory=utc_now_iso)


class ExecutionResult(BaseModel):
    fields: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @classmethod
    def from_rows(cls, rows: List[Dict[str, Any]], fields: Optional[List[str]] = None) -> "ExecutionResult":
        """Builds a result, deriving the field list from the first row when none is given."""
        if fields is None:
            fields = list(rows[0].keys()) if rows else []
        return cls(fields=fields, rows=rows)


def sanitize(value: Any) -> Optional[str]:
    """Trims catalog comments; blank comments become None."""
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None
