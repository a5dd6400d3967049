"""Table allow-list normalization and enforcement."""
from __future__ import annotations

import re
from typing import Iterable, Iterator, List, Optional

from querypanel.common.errors import AccessDenied
from querypanel.common.logger import get_logger
from querypanel.sql.tokenizer import TableReference, extract_table_references

logger = get_logger("allowlist")

_SAFE_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_safe_identifier(value: str) -> bool:
    return bool(_SAFE_IDENTIFIER_RE.match(value or ""))


class NormalizedTableFilter:
    """Deduplicated, case-preserving, insertion-ordered set of allowed tables.

    Relational filters are schema-qualified: bare entries inherit the default
    schema and entries that are not plain identifiers are dropped, since they
    end up in catalog queries. Columnar filters keep only the last dotted part
    of each entry.

    An empty filter means "no restriction configured", never "deny all".
    """

    def __init__(self, entries: Iterable[TableReference], default_schema: Optional[str] = None):
        self.default_schema = default_schema
        self._entries: List[TableReference] = []
        self._keys = set()
        for entry in entries:
            key = self._key(entry)
            if key in self._keys:
                continue
            self._keys.add(key)
            self._entries.append(entry)

    @classmethod
    def relational(cls, tables: Optional[Iterable[str]], default_schema: str = "public") -> "NormalizedTableFilter":
        entries: List[TableReference] = []
        for raw in tables or []:
            trimmed = (raw or "").strip()
            if not trimmed:
                continue
            parts = trimmed.split(".")
            name = parts[-1]
            schema = parts[-2] if len(parts) > 1 else default_schema
            if not is_safe_identifier(schema) or not is_safe_identifier(name):
                logger.debug(f"Skipping unsafe allow-list entry '{raw}'.")
                continue
            entries.append(TableReference(schema_name=schema, name=name))
        return cls(entries, default_schema=default_schema)

    @classmethod
    def columnar(cls, tables: Optional[Iterable[str]]) -> "NormalizedTableFilter":
        entries: List[TableReference] = []
        for raw in tables or []:
            trimmed = (raw or "").strip()
            if not trimmed:
                continue
            name = trimmed.split(".")[-1]
            if name:
                entries.append(TableReference(name=name))
        return cls(entries)

    @property
    def is_qualified(self) -> bool:
        return self.default_schema is not None

    def _key(self, ref: TableReference) -> str:
        if self.is_qualified:
            return ref.qualified(self.default_schema)
        return ref.name

    def __iter__(self) -> Iterator[TableReference]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __contains__(self, ref: TableReference) -> bool:
        return self._key(ref) in self._keys

    def names(self) -> List[str]:
        """Bare table names, in insertion order."""
        return [entry.name for entry in self._entries]

    def keys(self) -> List[str]:
        """Schema-qualified keys (relational) or bare names (columnar), in insertion order."""
        return [self._key(entry) for entry in self._entries]

    def validate(self, references: Iterable[TableReference]) -> None:
        """Raises AccessDenied naming the first reference outside the filter.

        A no-op when the filter is empty.
        """
        if not self._entries:
            return
        for ref in references:
            if ref not in self:
                raise AccessDenied(self._key(ref), details={"allowed_tables": self.keys()})

    def check_sql(self, sql: str) -> None:
        """Extracts the tables referenced by ``sql`` and validates them."""
        if not self._entries:
            return
        self.validate(extract_table_references(sql))
