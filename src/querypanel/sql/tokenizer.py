"""Lightweight SQL tokenizer that finds the tables a query reads from.

This is not a parser. It lexes the statement into words, quoted identifiers,
string literals and punctuation, then walks the tokens looking for the table
introduced after each ``FROM`` / ``JOIN``. Parenthesis depth is tracked together
with the word that opened each parenthesis, so the ``FROM`` keyword argument of
``EXTRACT(unit FROM expr)``, ``SUBSTRING(expr FROM n)``, ``TRIM(x FROM expr)``,
``POSITION(a FROM b)`` and ``OVERLAY(.. FROM n)`` never yields a table.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

FROM_FUNCTIONS = frozenset({"EXTRACT", "SUBSTRING", "SUBSTR", "TRIM", "POSITION", "OVERLAY"})

# Dialect qualifiers allowed between FROM/JOIN and the table name.
TABLE_QUALIFIERS = frozenset({"ONLY", "FINAL"})

# Words that open a derived table rather than a parenthesized join.
SUBQUERY_STARTS = frozenset({"SELECT", "WITH", "VALUES", "TABLE"})

# Words that end a FROM item and therefore can never be an alias.
CLAUSE_KEYWORDS = frozenset({
    "WHERE", "GROUP", "ORDER", "HAVING", "LIMIT", "OFFSET", "UNION", "EXCEPT",
    "INTERSECT", "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS", "OUTER",
    "NATURAL", "ON", "USING", "WINDOW", "FETCH", "FOR", "FINAL", "SAMPLE",
    "PREWHERE", "ARRAY", "GLOBAL", "ANY", "ALL", "ASOF", "SEMI", "ANTI",
    "SETTINGS", "FORMAT", "QUALIFY", "LATERAL", "RETURNING", "INTO", "VALUES",
})

WORD = "word"
QUOTED = "quoted"
STRING = "string"
PUNCT = "punct"
OTHER = "other"


class TableReference(BaseModel):
    """A table named after FROM/JOIN, with its optional schema qualifier."""

    schema_name: Optional[str] = None
    name: str

    model_config = ConfigDict(frozen=True)

    def qualified(self, default_schema: Optional[str] = None) -> str:
        schema = self.schema_name or default_schema
        return f"{schema}.{self.name}" if schema else self.name


@dataclass
class Token:
    kind: str
    value: str
    # Offsets of the token in the source text, quotes included.
    start: int = 0
    end: int = 0

    @property
    def upper(self) -> str:
        return self.value.upper() if self.kind == WORD else ""


def tokenize(sql: str) -> List[Token]:
    """Splits SQL text into tokens, dropping whitespace and comments.

    Unterminated strings, quoted identifiers and block comments run to the end
    of the input instead of raising.
    """
    tokens: List[Token] = []
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if ch.isspace():
            i += 1
        elif sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch in ("'", '"', "`"):
            start = i
            value, i = _read_quoted(sql, i, ch)
            tokens.append(Token(STRING if ch == "'" else QUOTED, value, start, i))
        elif ch.isalpha() or ch == "_":
            start = i
            while i < n and (sql[i].isalnum() or sql[i] in "_$"):
                i += 1
            tokens.append(Token(WORD, sql[start:i], start, i))
        elif ch in "(),.;":
            tokens.append(Token(PUNCT, ch, i, i + 1))
            i += 1
        else:
            tokens.append(Token(OTHER, ch, i, i + 1))
            i += 1
    return tokens


def _read_quoted(sql: str, start: int, quote: str):
    """Reads a quoted run starting at ``start``; a doubled quote is an escaped quote."""
    chars = []
    i = start + 1
    n = len(sql)
    while i < n:
        ch = sql[i]
        if ch == quote:
            if i + 1 < n and sql[i + 1] == quote:
                chars.append(quote)
                i += 2
                continue
            return "".join(chars), i + 1
        if ch == "\\" and quote == "'" and i + 1 < n:
            chars.append(sql[i + 1])
            i += 2
            continue
        chars.append(ch)
        i += 1
    return "".join(chars), n


def extract_table_references(sql: str) -> List[TableReference]:
    """Returns the ordered, de-duplicated tables introduced by FROM/JOIN.

    Never raises: malformed input yields whatever references were found.

    Args:
        sql (str): The SQL text.

    Returns:
        List[TableReference]: References in order of first appearance.
    """
    if not sql:
        return []
    try:
        tokens = tokenize(sql)
    except Exception:
        return []
    return _TableScanner(tokens).scan()


class _TableScanner:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.found: List[TableReference] = []
        # Word that opened each unclosed parenthesis (None when not a word).
        self.paren_owners: List[Optional[str]] = []

    def scan(self) -> List[TableReference]:
        i = 0
        while i < len(self.tokens):
            tok = self.tokens[i]
            if tok.kind == PUNCT and tok.value == "(":
                prev = self.tokens[i - 1] if i > 0 else None
                self.paren_owners.append(prev.upper if prev is not None and prev.kind == WORD else None)
            elif tok.kind == PUNCT and tok.value == ")":
                if self.paren_owners:
                    self.paren_owners.pop()
            elif tok.upper == "FROM" and not self._inside_from_function() and not self._is_distinct_from(i):
                i = self._read_from_list(i + 1)
                continue
            elif tok.upper == "JOIN" and not self._inside_from_function() and not self._is_array_join(i):
                i = self._read_reference(i + 1)
                continue
            i += 1
        return self.found

    def _inside_from_function(self) -> bool:
        return bool(self.paren_owners) and self.paren_owners[-1] in FROM_FUNCTIONS

    def _is_distinct_from(self, i: int) -> bool:
        # a IS [NOT] DISTINCT FROM b
        return i > 0 and self.tokens[i - 1].upper == "DISTINCT"

    def _is_array_join(self, i: int) -> bool:
        # ClickHouse ARRAY JOIN unfolds an array column, not a table
        return i > 0 and self.tokens[i - 1].upper == "ARRAY"

    def _read_from_list(self, i: int) -> int:
        i = self._read_reference(i)
        while True:
            i = self._skip_alias(i)
            if i < len(self.tokens) and self.tokens[i].kind == PUNCT and self.tokens[i].value == ",":
                i = self._read_reference(i + 1)
                continue
            return i

    def _read_reference(self, i: int) -> int:
        tokens = self.tokens
        # FROM (a JOIN b ON ...): the first table of a parenthesized join
        while self._opens_join_group(i):
            prev = tokens[i - 1] if i > 0 else None
            self.paren_owners.append(prev.upper if prev is not None and prev.kind == WORD else None)
            i += 1
        while i < len(tokens) and tokens[i].upper in TABLE_QUALIFIERS:
            i += 1
        if i >= len(tokens) or not self._is_name(tokens[i]):
            return i

        parts = [tokens[i].value]
        i += 1
        while (
            i + 1 < len(tokens)
            and tokens[i].kind == PUNCT
            and tokens[i].value == "."
            and self._is_name(tokens[i + 1])
        ):
            parts.append(tokens[i + 1].value)
            i += 2

        name = parts[-1]
        schema = parts[-2] if len(parts) > 1 else None
        if name:
            ref = TableReference(schema_name=schema or None, name=name)
            if ref not in self.found:
                self.found.append(ref)
        return i

    def _skip_alias(self, i: int) -> int:
        tokens = self.tokens
        while i < len(tokens) and tokens[i].upper == "FINAL":
            i += 1
        if i < len(tokens) and tokens[i].upper == "AS":
            i += 1
        if i < len(tokens) and (
            tokens[i].kind == QUOTED
            or (tokens[i].kind == WORD and tokens[i].upper not in CLAUSE_KEYWORDS)
        ):
            i += 1
        return i

    def _opens_join_group(self, i: int) -> bool:
        tokens = self.tokens
        if i + 1 >= len(tokens) or tokens[i].kind != PUNCT or tokens[i].value != "(":
            return False
        nxt = tokens[i + 1]
        if nxt.kind == PUNCT:
            return nxt.value == "(" and self._opens_join_group(i + 1)
        return self._is_name(nxt) and nxt.upper not in SUBQUERY_STARTS

    @staticmethod
    def _is_name(tok: Token) -> bool:
        if tok.kind in (QUOTED, STRING):
            return True
        return tok.kind == WORD and tok.upper not in CLAUSE_KEYWORDS and tok.upper != "SELECT"
