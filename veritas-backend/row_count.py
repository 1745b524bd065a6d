"""
Veritas - Row Count Probe
=========================

Rewrites an approved query into a COUNT(*) probe so the caller can learn how
many rows the full query would return before running it.

REWRITE RULE
------------
    SELECT TOP 50 Name FROM dbo.Customers WHERE Active = 1 ORDER BY Name
    ->
    SELECT COUNT(*) FROM dbo.Customers WHERE Active = 1

1. The outermost projection (including a TOP bound) becomes COUNT(*).
2. The outermost ORDER BY is stripped, together with the OFFSET / FETCH /
   LIMIT tail that follows it. Ordering is irrelevant to a count and may
   reference aliases that no longer exist.
3. Only the outermost FROM boundary is treated. Orderings inside subqueries
   are left untouched.

When the rewrite cannot be done with confidence, the result is the explicit
"unknown" sentinel instead of a guess:
    - no leading SELECT or no outermost FROM
    - an unterminated literal (boundaries are unreliable)
    - DISTINCT projection, aggregate projection, outermost GROUP BY or
      HAVING, or a set operation: COUNT(*) over the rewritten text would
      count something else

Nested subqueries with their own ORDER BY are a known simplification: only
the outermost clause is removed.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sql_lexer import tokenize, significant, first_unterminated

logger = logging.getLogger(__name__)

UNKNOWN_ROW_COUNT = -1

_SET_OPERATIONS = ("UNION", "INTERSECT", "EXCEPT", "MINUS")
_TAIL_KEYWORDS = ("OFFSET", "FETCH", "LIMIT")

# An outermost aggregate collapses the result to one row.
_AGGREGATES = (
    "COUNT", "COUNT_BIG", "SUM", "AVG", "MIN", "MAX", "STDEV", "STDEVP",
    "VAR", "VARP", "STRING_AGG", "GROUP_CONCAT", "ARRAY_AGG", "LISTAGG",
    "CHECKSUM_AGG", "APPROX_COUNT_DISTINCT",
)


@dataclass(frozen=True)
class RowCountEstimate:
    """A non-negative row count, or unknown. Never an exception."""
    value: Optional[int] = None

    @property
    def is_unknown(self) -> bool:
        return self.value is None

    def __int__(self) -> int:
        return UNKNOWN_ROW_COUNT if self.value is None else self.value

    @classmethod
    def unknown(cls) -> "RowCountEstimate":
        return cls(None)

    @classmethod
    def of(cls, count: Optional[int]) -> "RowCountEstimate":
        if count is None or count < 0:
            return cls(None)
        return cls(int(count))


@dataclass(frozen=True)
class CountProbeResult:
    """
    Result of the count-probe rewrite.

    Attributes:
        sql: The COUNT(*) probe, or None when the rewrite was not confident
        reason: Why the rewrite was refused (None on success)
    """
    sql: Optional[str]
    reason: Optional[str] = None

    @property
    def is_unknown(self) -> bool:
        return self.sql is None


def _unknown(reason: str) -> CountProbeResult:
    logger.debug(f"[ROW_COUNT] Count probe unavailable: {reason}")
    return CountProbeResult(sql=None, reason=reason)


def to_count_probe(sql: str) -> CountProbeResult:
    """
    Rewrite approved SQL into a COUNT(*) probe.

    Args:
        sql: SQL that already passed the guardrail

    Returns:
        CountProbeResult with the probe SQL, or the unknown sentinel
    """
    if not sql or not sql.strip():
        return _unknown("empty SQL")

    tokens = tokenize(sql)
    if first_unterminated(tokens) is not None:
        return _unknown("unterminated literal")

    sig = significant(tokens)
    if not sig or not sig[0].is_word("SELECT"):
        return _unknown("query does not start with SELECT")

    from_index = next(
        (i for i, t in enumerate(sig) if t.depth == 0 and t.is_word("FROM")),
        None,
    )
    if from_index is None:
        return _unknown("no outermost FROM clause")

    if any(t.depth == 0 and t.is_word("DISTINCT") for t in sig[1:from_index]):
        return _unknown("DISTINCT projection")

    projection = sig[1:from_index]
    for i, token in enumerate(projection[:-1]):
        if token.depth == 0 and token.is_word(*_AGGREGATES) and projection[i + 1].is_punct("("):
            return _unknown(f"aggregate projection {token.upper}")

    cut = None
    for i in range(from_index + 1, len(sig)):
        token = sig[i]
        if token.depth != 0:
            continue
        if token.is_word(*_SET_OPERATIONS):
            return _unknown(f"set operation {token.upper}")
        if token.is_word("GROUP") and i + 1 < len(sig) and sig[i + 1].is_word("BY"):
            return _unknown("outermost GROUP BY")
        if token.is_word("HAVING"):
            return _unknown("outermost HAVING")
        if cut is None:
            if token.is_word("ORDER") and i + 1 < len(sig) and sig[i + 1].is_word("BY"):
                cut = token.start
            elif token.is_word(*_TAIL_KEYWORDS) or token.is_punct(";"):
                cut = token.start

    body = sql[sig[from_index].start:cut].rstrip()
    probe = f"SELECT COUNT(*) {body}"
    logger.debug(f"[ROW_COUNT] Count probe: {probe[:80]}")
    return CountProbeResult(sql=probe)
