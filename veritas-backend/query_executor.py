"""
Veritas - Query Executor
========================

Thin SQLAlchemy wrapper that runs SQL the guardrail already approved.

- execute():            run the approved (possibly rewritten) SQL
- execute_preview():    run a bounded preview variant
- estimate_row_count(): run the COUNT(*) probe; degrades to unknown

Driver errors never escape: they come back as QueryResult(success=False).
Rows fetched per query are capped at max_rows regardless of the SQL bound.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from query_bounds import BoundStyle, to_preview
from row_count import RowCountEstimate, to_count_probe

logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Outcome of one execution."""
    success: bool
    sql: str
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    execution_time_ms: float = 0.0
    error: Optional[str] = None
    is_preview: bool = False
    preview_row_limit: Optional[int] = None
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sql": self.sql,
            "columns": self.columns,
            "rows": self.rows,
            "row_count": self.row_count,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "error": self.error,
            "is_preview": self.is_preview,
            "preview_row_limit": self.preview_row_limit,
            "truncated": self.truncated,
        }


class QueryExecutor:
    """
    Runs approved SQL against one database.

    Args:
        engine: SQLAlchemy engine
        bound_style: Bound form used when a preview has to inject a bound
        max_rows: Hard cap on rows fetched per query
    """

    def __init__(self, engine: Engine, bound_style: BoundStyle = BoundStyle.TOP, max_rows: int = 10000):
        self.engine = engine
        self.bound_style = bound_style
        self.max_rows = max_rows

    @classmethod
    def from_url(cls, database_url: str, bound_style: BoundStyle = BoundStyle.TOP,
                 max_rows: int = 10000, **engine_kwargs) -> "QueryExecutor":
        engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)
        logger.info(f"[EXECUTOR] Engine created for dialect '{engine.dialect.name}'")
        return cls(engine, bound_style, max_rows)

    def execute(self, sql: str) -> QueryResult:
        """
        Execute approved SQL.

        Returns:
            QueryResult with rows as dicts, or success=False with the driver error
        """
        start = time.perf_counter()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(sql))
                columns = list(result.keys())
                rows = result.fetchmany(self.max_rows + 1)
        except SQLAlchemyError as e:
            elapsed = (time.perf_counter() - start) * 1000
            err_msg = str(getattr(e, "orig", None) or e)
            logger.error(f"[EXECUTOR] Query failed after {elapsed:.0f}ms: {err_msg}")
            return QueryResult(success=False, sql=sql, execution_time_ms=elapsed, error=err_msg)

        truncated = len(rows) > self.max_rows
        if truncated:
            rows = rows[:self.max_rows]
            logger.warning(f"[EXECUTOR] Result truncated to {self.max_rows} rows")

        data = [dict(row._mapping) for row in rows]
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(f"[EXECUTOR] Query executed: {len(data)} rows in {elapsed:.0f}ms")

        return QueryResult(
            success=True,
            sql=sql,
            columns=columns,
            rows=data,
            row_count=len(data),
            execution_time_ms=elapsed,
            truncated=truncated,
        )

    def execute_preview(self, sql: str, row_cap: int) -> QueryResult:
        """Execute a preview variant of approved SQL capped at ``row_cap`` rows."""
        preview_sql = to_preview(sql, row_cap, self.bound_style)
        result = self.execute(preview_sql)
        result.is_preview = True
        result.preview_row_limit = row_cap
        return result

    def estimate_row_count(self, sql: str) -> RowCountEstimate:
        """
        Count the rows the approved query would return without its bound.

        Returns RowCountEstimate.unknown() when no confident probe exists or
        the probe fails. Never raises for database errors.
        """
        probe = to_count_probe(sql)
        if probe.is_unknown:
            return RowCountEstimate.unknown()

        try:
            with self.engine.connect() as conn:
                count = conn.execute(text(probe.sql)).scalar()
        except SQLAlchemyError as e:
            logger.warning(f"[EXECUTOR] Count probe failed: {e}")
            return RowCountEstimate.unknown()

        estimate = RowCountEstimate.of(count)
        logger.debug(f"[EXECUTOR] Estimated row count: {int(estimate)}")
        return estimate

    def dispose(self) -> None:
        self.engine.dispose()
