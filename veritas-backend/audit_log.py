"""
Veritas - Audit Log
===================

Append-only record of every guarded request (ask, run_sql, preview, count):
what was asked, what SQL the generator produced, what the guardrail decided
and what ran. The read-only /sql/validate check is not recorded.

Stored through SQLAlchemy Core in its own database (SQLite by default) so the
audited database is never written to.
"""

import getpass
import json
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Column as SAColumn,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table as SATable,
    Text,
    create_engine,
    insert,
    select,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()

audit_log_table = SATable(
    "audit_log",
    metadata,
    SAColumn("id", Integer, primary_key=True, autoincrement=True),
    SAColumn("timestamp", DateTime, nullable=False, index=True),
    SAColumn("user", String(128), nullable=False),
    SAColumn("action", String(64), nullable=False),
    SAColumn("connection_profile", String(256)),
    SAColumn("natural_language_query", Text),
    SAColumn("generated_sql", Text),
    SAColumn("validation_status", String(32)),
    SAColumn("validation_issues", Text),
    SAColumn("execution_status", String(32)),
    SAColumn("row_count", Integer),
    SAColumn("execution_time_ms", Float),
    SAColumn("error_message", Text),
)


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


@dataclass
class AuditEntry:
    action: str
    timestamp: datetime = field(default_factory=datetime.now)
    user: str = field(default_factory=_current_user)
    connection_profile: Optional[str] = None
    natural_language_query: Optional[str] = None
    generated_sql: Optional[str] = None
    validation_status: Optional[str] = None
    validation_issues: List[Dict[str, Any]] = field(default_factory=list)
    execution_status: Optional[str] = None
    row_count: Optional[int] = None
    execution_time_ms: Optional[float] = None
    error_message: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "user": self.user,
            "action": self.action,
            "connection_profile": self.connection_profile,
            "natural_language_query": self.natural_language_query,
            "generated_sql": self.generated_sql,
            "validation_status": self.validation_status,
            "validation_issues": json.dumps(self.validation_issues) if self.validation_issues else None,
            "execution_status": self.execution_status,
            "row_count": self.row_count,
            "execution_time_ms": self.execution_time_ms,
            "error_message": self.error_message,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AuditEntry":
        issues = row.get("validation_issues")
        return cls(
            action=row["action"],
            timestamp=row["timestamp"],
            user=row["user"],
            connection_profile=row.get("connection_profile"),
            natural_language_query=row.get("natural_language_query"),
            generated_sql=row.get("generated_sql"),
            validation_status=row.get("validation_status"),
            validation_issues=json.loads(issues) if issues else [],
            execution_status=row.get("execution_status"),
            row_count=row.get("row_count"),
            execution_time_ms=row.get("execution_time_ms"),
            error_message=row.get("error_message"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_row()
        data["timestamp"] = self.timestamp.isoformat()
        data["validation_issues"] = self.validation_issues
        return data


class AuditLogger:
    """Append-only audit log. Creates its table on first use."""

    def __init__(self, database_url: str = "sqlite:///veritas_audit.db", engine: Optional[Engine] = None):
        self.engine = engine if engine is not None else create_engine(database_url)
        metadata.create_all(self.engine, tables=[audit_log_table])
        logger.info(f"[AUDIT] Audit log ready ({self.engine.url.drivername})")

    def log(self, entry: AuditEntry) -> None:
        with self.engine.begin() as conn:
            conn.execute(insert(audit_log_table).values(**entry.to_row()))
        logger.debug(f"[AUDIT] {entry.action}: validation={entry.validation_status} "
                     f"execution={entry.execution_status}")

    def recent(
        self,
        limit: int = 100,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[AuditEntry]:
        """Most recent entries first, optionally restricted to [since, until]."""
        query = select(audit_log_table)
        if since is not None:
            query = query.where(audit_log_table.c.timestamp >= since)
        if until is not None:
            query = query.where(audit_log_table.c.timestamp <= until)
        query = query.order_by(audit_log_table.c.timestamp.desc(), audit_log_table.c.id.desc()).limit(limit)

        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [AuditEntry.from_row(dict(row)) for row in rows]
