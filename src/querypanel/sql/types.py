"""Type normalization helpers for columnar (ClickHouse-family) catalogs."""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

_WRAPPER_RE = re.compile(r"^(Nullable|LowCardinality|SimpleAggregateFunction)\((.+)\)$", re.IGNORECASE)
_NULLABLE_RE = re.compile(r"Nullable\s*\(", re.IGNORECASE)
_DECIMAL_RE = re.compile(r"Decimal(?:\d+)?\((\d+)\s*,\s*(\d+)\)", re.IGNORECASE)
_FIXED_STRING_RE = re.compile(r"^(?:FixedString|StringFixed)\((\d+)\)$", re.IGNORECASE)
_TUPLE_RE = re.compile(r"^tuple\s*\(", re.IGNORECASE)


def is_nullable_type(type_name: str) -> bool:
    return bool(_NULLABLE_RE.search(type_name))


def unwrap_type_modifiers(type_name: str) -> str:
    """Strips Nullable/LowCardinality/SimpleAggregateFunction wrappers until a bare type remains.

    >>> unwrap_type_modifiers("LowCardinality(Nullable(String))")
    'String'
    """
    current = type_name.strip()
    match = _WRAPPER_RE.match(current)
    while match:
        inner = match.group(2).strip()
        if match.group(1).lower() == "simpleaggregatefunction":
            # SimpleAggregateFunction(func, Type): the first argument names the aggregate.
            args = _split_top_level(inner)
            inner = ",".join(args[1:]).strip() if len(args) > 1 else inner
        if not inner:
            break
        current = inner
        match = _WRAPPER_RE.match(current)
    return current


def extract_precision_scale(type_name: str) -> Tuple[Optional[int], Optional[int]]:
    """Returns (precision, scale) for Decimal types, (None, None) otherwise."""
    match = _DECIMAL_RE.search(unwrap_type_modifiers(type_name))
    if not match:
        return None, None
    return int(match.group(1)), int(match.group(2))


def extract_fixed_string_length(type_name: str) -> Optional[int]:
    match = _FIXED_STRING_RE.match(unwrap_type_modifiers(type_name))
    if not match:
        return None
    return int(match.group(1))


def parse_key_expression(expression: Optional[str]) -> List[str]:
    """Parses a sorting/primary key expression into its ordered column names.

    The expression may be a bare column, a comma separated list, or a
    ``tuple(...)``. Commas nested inside function calls do not split, quotes and
    backticks are stripped and only the last dotted part is kept.

    >>> parse_key_expression("tuple(tenant_id, toDate(ts), `db`.`event`)")
    ['tenant_id', 'toDate(ts)', 'event']
    """
    if not expression:
        return []
    value = expression.strip()
    if not value:
        return []
    if _TUPLE_RE.match(value) and value.endswith(")"):
        value = _TUPLE_RE.sub("", value, count=1)[:-1]

    columns: List[str] = []
    for part in _split_top_level(value):
        _append_key_column(columns, part)
    return columns


def _split_top_level(value: str) -> List[str]:
    """Splits on commas that are not nested inside parentheses."""
    parts: List[str] = []
    depth = 0
    token: List[str] = []
    for ch in value:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            parts.append("".join(token))
            token = []
            continue
        token.append(ch)
    parts.append("".join(token))
    return parts


def _append_key_column(columns: List[str], raw: str) -> None:
    raw = raw.strip()
    if not raw:
        return
    name = _strip_quotes(raw).replace("`", "").strip()
    name = name.split(".")[-1].strip()
    if name:
        columns.append(name)


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value
