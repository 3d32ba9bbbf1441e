"""Read-only policy for generated SQL.

The validator is a coarse textual defense, not a SQL parser:

- The statement must start with SELECT (after trimming, case-insensitive).
- The text must not contain any blocklisted keyword as a case-insensitive
  *substring*. This false-positives on harmless text such as a
  ``created_at`` column, an ``is_deleted`` flag or a literal like
  ``'update pending'``, and it false-negatives on keywords hidden by
  comments or string concatenation. Both limitations are accepted.
- Optionally, every table in a FROM list or after JOIN must be in an
  allow-list.

Every outcome carries the exact text that was validated.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum


class QueryType(StrEnum):
    """Types of SQL statements."""

    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    OTHER = "OTHER"


# Mutating-operation keywords rejected anywhere in the text
BLOCKED_KEYWORDS = (
    "drop",
    "delete",
    "truncate",
    "update",
    "insert",
    "alter",
    "create",
    "grant",
    "revoke",
)

# Phrases that mark a non-SQL reply explaining why the question can't be answered
INFORMATIONAL_PHRASES = ("cannot be answered", "not available", "no data")

READ_ONLY_ERROR = (
    "Only SELECT (read-only) queries are allowed. Please rephrase your question "
    "to ask for information retrieval rather than data modification."
)

_TOKEN_PATTERN = re.compile(
    r"""
    '(?:[^']|'')*'          # string literal
    | "(?:[^"]|"")*"        # quoted identifier
    | `[^`]*`               # backtick identifier
    | \[[^\]]*\]            # bracket identifier
    | --[^\n]*              # line comment
    | /\*.*?\*/             # block comment
    | [A-Za-z_][A-Za-z0-9_$]*
    | \d+(?:\.\d+)?
    | \S
    """,
    re.VERBOSE | re.DOTALL,
)

# Keywords that close a FROM list at the same parenthesis depth
_FROM_LIST_END = frozenset(
    {
        "WHERE",
        "GROUP",
        "HAVING",
        "ORDER",
        "LIMIT",
        "OFFSET",
        "UNION",
        "EXCEPT",
        "INTERSECT",
        "WINDOW",
    }
)


def _is_identifier(token: str) -> bool:
    return token[0] in "\"`[" or token[0] == "_" or token[0].isalpha()


def _unquote(token: str) -> str:
    if token[0] in "\"`[":
        return token[1:-1].replace('""', '"')
    return token


@dataclass
class ValidationResult:
    """Result of query validation."""

    valid: bool
    """Whether the query passed validation."""

    sql: str = ""
    """The exact text that was validated."""

    error: str | None = None
    """Error message if validation failed."""

    query_type: QueryType = QueryType.OTHER
    """Detected statement type."""

    blocked_keyword: str | None = None
    """Blocklisted keyword that caused the rejection, if any."""

    tables_accessed: list[str] = field(default_factory=list)
    """Tables referenced after FROM/JOIN."""

    warnings: list[str] = field(default_factory=list)
    """Non-fatal warnings about the query."""


class QueryValidator:
    """Validates generated SQL before execution.

    Checks run in order and stop at the first failure:
    1. Statement type (SELECT only)
    2. Keyword blocklist
    3. Table allow-list (when one is configured)
    """

    def __init__(
        self,
        allowed_tables: Iterable[str] | None = None,
        blocked_keywords: Iterable[str] = BLOCKED_KEYWORDS,
    ) -> None:
        """Initialize the validator.

        Args:
            allowed_tables: Table/view names queries may reference (None = no check)
            blocked_keywords: Keywords rejected as case-insensitive substrings
        """
        self._allowed_tables = (
            {t.lower() for t in allowed_tables} if allowed_tables is not None else None
        )
        self._blocked_keywords = tuple(k.lower() for k in blocked_keywords)

    def validate(self, sql: str) -> ValidationResult:
        """Validate an SQL query.

        Args:
            sql: Query text (after truncation repair)

        Returns:
            ValidationResult whose ``sql`` is always ``sql`` unchanged
        """
        query_type = self._detect_query_type(sql)

        if query_type != QueryType.SELECT:
            return ValidationResult(
                valid=False,
                sql=sql,
                error=self._non_select_error(sql),
                query_type=query_type,
            )

        keyword = self._find_blocked_keyword(sql)
        if keyword is not None:
            return ValidationResult(
                valid=False,
                sql=sql,
                error=f"Query contains blocked keyword '{keyword.upper()}'. "
                "Only read-only queries are allowed.",
                query_type=query_type,
                blocked_keyword=keyword,
            )

        tables = self._extract_tables(sql)
        if self._allowed_tables is not None:
            unauthorized = tables - self._allowed_tables
            if unauthorized:
                return ValidationResult(
                    valid=False,
                    sql=sql,
                    error=f"Access denied to tables: {', '.join(sorted(unauthorized))}. "
                    f"Allowed tables: {', '.join(sorted(self._allowed_tables)) or 'none'}",
                    query_type=query_type,
                    tables_accessed=sorted(tables),
                )

        return ValidationResult(
            valid=True,
            sql=sql,
            query_type=query_type,
            tables_accessed=sorted(tables),
            warnings=self._check_warnings(sql),
        )

    def _detect_query_type(self, sql: str) -> QueryType:
        upper_sql = sql.strip().upper()
        for query_type in (QueryType.SELECT, QueryType.INSERT, QueryType.UPDATE, QueryType.DELETE):
            if upper_sql.startswith(query_type.value):
                return query_type
        return QueryType.OTHER

    def _non_select_error(self, sql: str) -> str:
        """Pick the error for a non-SELECT reply.

        A reply that reads like an explanation rather than a statement is
        returned as the error itself, so the user sees why.
        """
        lowered = sql.lower()
        if (
            len(sql) > 20
            and ";" not in sql
            and any(phrase in lowered for phrase in INFORMATIONAL_PHRASES)
        ):
            return sql.strip()
        return READ_ONLY_ERROR

    def _find_blocked_keyword(self, sql: str) -> str | None:
        lowered = sql.lower()
        for keyword in self._blocked_keywords:
            if keyword in lowered:
                return keyword
        return None

    def _extract_tables(self, sql: str) -> set[str]:
        """Extract table names referenced in FROM lists and after JOIN.

        Every item of a comma-separated FROM list is collected, aliases are
        skipped, and literals and comments are ignored. Quoted names
        (``"t"``, ``[t]``, `` `t` ``) are unquoted; dotted names are kept
        whole, so ``main.t`` never matches an allowed ``t``.
        """
        tables: set[str] = set()
        tokens = [t for t in _TOKEN_PATTERN.findall(sql) if not t.startswith(("--", "/*"))]
        depth = 0
        # Parenthesis depths that are currently inside a FROM list
        from_depths: set[int] = set()
        expecting_table = False
        i = 0
        while i < len(tokens):
            token = tokens[i]
            upper = token.upper()
            if token == "(":
                depth += 1
                expecting_table = False
            elif token == ")":
                from_depths.discard(depth)
                depth = max(0, depth - 1)
            elif token == ";":
                from_depths.clear()
                expecting_table = False
            elif token == ",":
                expecting_table = depth in from_depths
            elif upper in ("FROM", "JOIN"):
                from_depths.add(depth)
                expecting_table = True
            elif upper in _FROM_LIST_END:
                from_depths.discard(depth)
                expecting_table = False
            elif expecting_table and upper in ("LATERAL", "ONLY"):
                pass
            elif expecting_table and _is_identifier(token):
                parts = [_unquote(token)]
                while (
                    i + 2 < len(tokens) and tokens[i + 1] == "." and _is_identifier(tokens[i + 2])
                ):
                    parts.append(_unquote(tokens[i + 2]))
                    i += 2
                tables.add(".".join(parts).lower())
                expecting_table = False
            i += 1
        return tables

    def _check_warnings(self, sql: str) -> list[str]:
        warnings = []
        if re.search(r"\bSELECT\s+\*", sql, re.IGNORECASE):
            warnings.append(
                "Using SELECT * may return more data than needed. "
                "Consider selecting specific columns."
            )
        if not re.search(r"\bLIMIT\s+\d+", sql, re.IGNORECASE):
            warnings.append("No LIMIT clause found; results are paginated by the executor.")
        return warnings


def validate_query(sql: str, allowed_tables: Iterable[str] | None = None) -> ValidationResult:
    """Convenience function to validate a query.

    Args:
        sql: SQL query to validate
        allowed_tables: Optional table allow-list

    Returns:
        ValidationResult
    """
    return QueryValidator(allowed_tables=allowed_tables).validate(sql)
