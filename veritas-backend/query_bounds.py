"""
Veritas - Row Bound Detection, Injection and Preview Rewriting
===============================================================

Every query that reaches the database must carry a row bound. This module
recognizes the bound clauses already present in approved SQL, injects one
when missing, and rewrites an existing one for cheap previews.

Recognized bound clauses (outermost query only):
    SELECT [DISTINCT|ALL] TOP n [PERCENT]     T-SQL, also TOP (n)
    FETCH FIRST|NEXT n ROW|ROWS ONLY          ANSI / Oracle / DB2 / T-SQL
    LIMIT n  |  LIMIT offset, n               PostgreSQL / MySQL / SQLite

A bound inside a subquery limits the subquery, not the result, so it is
ignored. When several outermost FETCH/LIMIT clauses exist (set operations),
the last one is the one that applies.

All functions here are pure text transforms over the shared lexer. They
assume the SQL already passed the guardrail.
"""

import logging
from enum import Enum
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sql_lexer import Token, TokenKind, tokenize, significant

logger = logging.getLogger(__name__)


class BoundStyle(Enum):
    """How a missing bound is written into the SQL."""
    TOP = "top"
    LIMIT = "limit"
    FETCH = "fetch"


@dataclass(frozen=True)
class RowBound:
    """
    A bound clause found in SQL.

    Attributes:
        style: Which clause form was found
        value: The numeric argument
        value_start: Source offset of the numeric literal
        value_end: Source offset just past the numeric literal
        percent_span: Span to delete when dropping a TOP ... PERCENT modifier
    """
    style: BoundStyle
    value: int
    value_start: int
    value_end: int
    percent_span: Optional[Tuple[int, int]] = None

    @property
    def is_percent(self) -> bool:
        return self.percent_span is not None


_SELECT_MODIFIERS = ("DISTINCT", "ALL")


def _as_int(text: str) -> Optional[int]:
    """Row count of a numeric literal; None when it has no finite value."""
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def _find_top(sig: List[Token]) -> Optional[RowBound]:
    if not sig or not sig[0].is_word("SELECT"):
        return None

    i = 1
    if i < len(sig) and sig[i].is_word(*_SELECT_MODIFIERS):
        i += 1
    if i >= len(sig) or not sig[i].is_word("TOP"):
        return None
    i += 1

    if i < len(sig) and sig[i].is_punct("("):
        if i + 2 < len(sig) and sig[i + 1].kind is TokenKind.NUMBER and sig[i + 2].is_punct(")"):
            number, closing = sig[i + 1], sig[i + 2]
            after = i + 3
        else:
            return None
    elif i < len(sig) and sig[i].kind is TokenKind.NUMBER:
        number = closing = sig[i]
        after = i + 1
    else:
        return None

    value = _as_int(number.text)
    if value is None:
        return None

    percent_span = None
    if after < len(sig) and sig[after].is_word("PERCENT"):
        percent_span = (closing.end, sig[after].end)

    return RowBound(BoundStyle.TOP, value, number.start, number.end, percent_span)


def _find_fetch(sig: List[Token]) -> Optional[RowBound]:
    found = None
    for k in range(len(sig) - 4):
        if sig[k].depth != 0 or not sig[k].is_word("FETCH"):
            continue
        first, number, rows, tail = sig[k + 1], sig[k + 2], sig[k + 3], sig[k + 4]
        if (
            first.is_word("FIRST", "NEXT")
            and number.kind is TokenKind.NUMBER
            and rows.is_word("ROW", "ROWS")
            and tail.is_word("ONLY", "WITH")
            and _as_int(number.text) is not None
        ):
            found = RowBound(BoundStyle.FETCH, _as_int(number.text), number.start, number.end)
    return found


def _find_limit(sig: List[Token]) -> Optional[RowBound]:
    found = None
    for k in range(len(sig) - 1):
        if sig[k].depth != 0 or not sig[k].is_word("LIMIT"):
            continue
        number = sig[k + 1]
        if number.kind is not TokenKind.NUMBER:
            continue
        # MySQL "LIMIT offset, count": the count is the bound.
        if k + 3 < len(sig) and sig[k + 2].is_punct(",") and sig[k + 3].kind is TokenKind.NUMBER:
            number = sig[k + 3]
        if _as_int(number.text) is None:
            continue
        found = RowBound(BoundStyle.LIMIT, _as_int(number.text), number.start, number.end)
    return found


def find_row_bound(tokens: List[Token]) -> Optional[RowBound]:
    """Return the outermost bound clause in a token stream, or None."""
    sig = significant(tokens)
    return _find_top(sig) or _find_fetch(sig) or _find_limit(sig)


def has_row_bound(sql: str) -> bool:
    return find_row_bound(tokenize(sql)) is not None


def extract_row_bound(sql: str) -> Optional[int]:
    """
    Extract the outermost bound value from a SQL query.

    Returns None if no bound clause is present.
    """
    if not sql:
        return None
    bound = find_row_bound(tokenize(sql))
    return bound.value if bound else None


def inject_row_bound(
    sql: str,
    limit: int,
    style: BoundStyle = BoundStyle.TOP,
    tokens: Optional[List[Token]] = None,
) -> str:
    """
    Add a bound clause of ``limit`` rows to SQL that has none.

    TOP goes right after the leading SELECT and any DISTINCT/ALL modifier.
    LIMIT and FETCH FIRST go after the last clause, before trailing ';'.

    Raises:
        ValueError: if a TOP bound is requested for SQL not starting with SELECT
    """
    if tokens is None:
        tokens = tokenize(sql)
    sig = significant(tokens)

    if style is BoundStyle.TOP:
        if not sig or not sig[0].is_word("SELECT"):
            raise ValueError("TOP bound requires SQL starting with SELECT")
        i = 1
        if i < len(sig) and sig[i].is_word(*_SELECT_MODIFIERS):
            i += 1
        if i >= len(sig):
            return sql.rstrip() + f" TOP {limit}"
        pos = sig[i].start
        return sql[:pos] + f"TOP {limit} " + sql[pos:]

    clause = f"LIMIT {limit}" if style is BoundStyle.LIMIT else f"FETCH FIRST {limit} ROWS ONLY"

    body = [t for t in sig if not t.is_punct(";")]
    trailing_semicolons = 0
    for token in reversed(sig):
        if not token.is_punct(";"):
            break
        trailing_semicolons += 1
    if not body or trailing_semicolons < len(sig) - len(body):
        # A ';' in the middle means this is not a single approved statement.
        raise ValueError("Cannot bound SQL containing more than one statement")

    pos = body[-1].end
    return sql[:pos] + f" {clause}" + sql[pos:]


def replace_row_bound(sql: str, bound: RowBound, limit: int) -> str:
    """Set an existing bound's numeric argument to ``limit``; drops TOP ... PERCENT."""
    if bound.percent_span:
        start, end = bound.percent_span
        sql = sql[:start] + sql[end:]
    return sql[:bound.value_start] + str(limit) + sql[bound.value_end:]


# =============================================================================
# PREVIEW REWRITER
# =============================================================================
# Derives a cheap "look at the first few rows" variant of an approved query.
# Idempotent: to_preview(to_preview(sql, n), n) == to_preview(sql, n), because
# the second pass finds the bound the first pass wrote and rewrites it to the
# same value.
# =============================================================================

def to_preview(sql: str, row_cap: int, style: BoundStyle = BoundStyle.TOP) -> str:
    """
    Rewrite approved SQL so it returns at most ``row_cap`` rows.

    Args:
        sql: SQL that already passed the guardrail
        row_cap: Preview row count (must be > 0)
        style: Bound form used when the SQL has no bound yet

    Returns:
        SQL with exactly one outermost bound of ``row_cap``

    Raises:
        ValueError: If row_cap is not a positive integer or sql is empty
    """
    if isinstance(row_cap, bool) or not isinstance(row_cap, int) or row_cap <= 0:
        raise ValueError(f"row_cap must be a positive integer, got {row_cap!r}")

    if not sql or not sql.strip():
        raise ValueError("sql must be a non-empty string")

    tokens = tokenize(sql)
    bound = find_row_bound(tokens)

    if bound is None:
        preview = inject_row_bound(sql, row_cap, style, tokens)
        logger.debug(f"[PREVIEW] Injected {style.value.upper()} {row_cap}")
    else:
        preview = replace_row_bound(sql, bound, row_cap)
        logger.debug(f"[PREVIEW] Rewrote {bound.style.value.upper()} {bound.value} -> {row_cap}")

    return preview
