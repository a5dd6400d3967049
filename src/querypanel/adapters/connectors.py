"""Client functions built on SQLAlchemy engines."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Engine, create_engine, text

from querypanel.adapters.postgres import PostgresQueryResult
from querypanel.common.errors import ConfigurationError
from querypanel.common.logger import get_logger

logger = get_logger("connectors")

# String literals, quoted identifiers, comments and dollar-quoted bodies are
# matched first and copied through; only a bare $N outside them is a bind.
_POSITIONAL_RE = re.compile(
    r"(?P<skip>'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r"|--[^\n]*"
    r"|/\*.*?\*/"
    r"|\$\$.*?\$\$"
    r"|\$(?P<tag>[A-Za-z_]\w*)\$.*?\$(?P=tag)\$)"
    r"|\$(?P<index>\d+)\b",
    re.DOTALL,
)


def to_named_binds(sql: str, params: Optional[List[Any]]) -> Tuple[str, Dict[str, Any]]:
    """Rewrites ``$N`` placeholders into ``:pN`` binds understood by ``text()``.

    A ``$N`` inside a string literal, quoted identifier, comment or
    dollar-quoted body is text and is left alone.

    >>> to_named_binds("SELECT * FROM t WHERE a = $1 AND b = $2", [1, "x"])
    ('SELECT * FROM t WHERE a = :p1 AND b = :p2', {'p1': 1, 'p2': 'x'})
    """
    values = list(params or [])
    binds: Dict[str, Any] = {}

    def _replace(match: "re.Match[str]") -> str:
        if match.group("index") is None:
            return match.group(0)
        index = int(match.group("index"))
        if index < 1 or index > len(values):
            raise ValueError(f"Placeholder ${index} has no matching parameter ({len(values)} supplied).")
        binds[f"p{index}"] = values[index - 1]
        return f":p{index}"

    return _POSITIONAL_RE.sub(_replace, sql), binds


class SqlAlchemyClient:
    """Relational client function backed by a SQLAlchemy engine.

    Instances are callables with the ``(sql, positional_params)`` signature the
    Postgres adapter expects.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> "SqlAlchemyClient":
        if not url:
            raise ConfigurationError("A database URL is required to build a SQLAlchemy client.")
        try:
            engine = create_engine(url, pool_pre_ping=True)
        except Exception as e:
            logger.error(f"Failed to create engine: {e}")
            raise ConfigurationError(f"Invalid database URL: {e}") from e
        return cls(engine)

    def __call__(self, sql: str, params: Optional[List[Any]] = None) -> PostgresQueryResult:
        statement, binds = to_named_binds(sql, params)
        with self.engine.connect() as conn:
            result = conn.execute(text(statement), binds)
            if not result.returns_rows:
                return PostgresQueryResult()
            fields = list(result.keys())
            rows = [dict(row._mapping) for row in result.fetchall()]
        return PostgresQueryResult(rows=rows, fields=fields)

    def close(self) -> None:
        self.engine.dispose()
