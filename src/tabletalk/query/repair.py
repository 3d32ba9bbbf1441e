"""Truncation repair for generated SQL.

Completion output is sometimes cut off mid-statement, most often inside
a string literal or a long ``IN (...)`` list. ``fix_truncated_query``
applies four ordered text rules that restore quote and parenthesis
balance. It is a heuristic, not a parser: it counts characters without
regard to literals or comments and does nothing beyond those rules.

Rule order matters; each rule sees the output of the previous one:

1. An odd number of ``'`` gets one ``'`` appended.
2. An ``IN (`` followed later by `` AND `` with no ``)`` between them gets
   a ``)`` inserted right before that `` AND ``.
3. Otherwise, an ``IN (`` in text with no ``)`` at all gets ``)`` appended.
4. ``)`` is appended once per unmatched ``(``.
"""

from __future__ import annotations

import logging

from tabletalk.exceptions import RepairFailure

logger = logging.getLogger(__name__)

_IN_OPEN = "IN ("
_AND = " AND "


def fix_truncated_query(sql: str) -> str:
    """Repair a possibly truncated query.

    Idempotent: ``fix_truncated_query(fix_truncated_query(s)) == fix_truncated_query(s)``.

    Example:
        >>> fix_truncated_query("SELECT a FROM t WHERE c = 'Mary")
        "SELECT a FROM t WHERE c = 'Mary'"
    """
    fixed = sql

    if fixed.count("'") % 2 == 1:
        fixed += "'"

    in_pos = fixed.find(_IN_OPEN)
    if in_pos != -1:
        list_start = in_pos + len(_IN_OPEN)
        and_pos = fixed.find(_AND, list_start)
        if and_pos != -1 and ")" not in fixed[list_start:and_pos]:
            fixed = fixed[:and_pos] + ")" + fixed[and_pos:]
        elif ")" not in fixed:
            fixed += ")"

    deficit = fixed.count("(") - fixed.count(")")
    if deficit > 0:
        fixed += ")" * deficit

    if fixed != sql:
        logger.warning(f"Repaired truncated query: {sql!r} -> {fixed!r}")
    return fixed


def _unquoted_paren_balance(sql: str) -> tuple[int, int]:
    """Return (opens, closes) counted outside single-quoted literals."""
    opens = closes = 0
    in_literal = False
    for char in sql:
        if char == "'":
            in_literal = not in_literal
        elif not in_literal:
            if char == "(":
                opens += 1
            elif char == ")":
                closes += 1
    return opens, closes


def check_structure(sql: str) -> None:
    """Reject text that repair could not make structurally sound.

    Raises:
        RepairFailure: If the text is empty, has an unterminated literal,
            or closes more parentheses than it opens
    """
    if not sql.strip():
        raise RepairFailure("Generated query is empty.", sql)
    if sql.count("'") % 2 == 1:
        raise RepairFailure("Generated query has an unterminated string literal.", sql)
    opens, closes = _unquoted_paren_balance(sql)
    if closes > opens:
        raise RepairFailure(
            f"Generated query closes {closes - opens} more parenthesis than it opens.", sql
        )


def repair_query(sql: str) -> str:
    """Apply truncation repair and verify the result.

    Raises:
        RepairFailure: If the repaired text is still structurally invalid
    """
    fixed = fix_truncated_query(sql)
    check_structure(fixed)
    return fixed
