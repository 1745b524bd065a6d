"""
QueryPipeline - Orchestration Controller

Orchestrates a single request through:
- NL-SQL generation (ask only)
- Guardrail validation (always; nothing executes without it)
- Row-count estimation
- Execution or preview (unless dry run)
- Audit logging

Contains NO guardrail logic of its own. The GuardrailValidator is the sole
authority on whether SQL may run, and only its rewritten_sql is executed.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from audit_log import AuditEntry, AuditLogger
from config import Settings
from query_executor import QueryExecutor, QueryResult
from row_count import RowCountEstimate
from schema_catalog import SchemaCatalog
from sql_generator import SqlGenerationError, SqlGenerator
from sql_validator import GuardrailValidator, ValidationResult

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class PipelineResult:
    """Result from pipeline."""
    success: bool
    execution_time: float
    question: Optional[str] = None
    sql: Optional[str] = None
    validated_sql: Optional[str] = None
    explanation: Optional[str] = None
    validation: Optional[ValidationResult] = None
    result: Optional[QueryResult] = None
    estimated_rows: Optional[RowCountEstimate] = None
    dry_run: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "question": self.question,
            "sql": self.sql,
            "validated_sql": self.validated_sql,
            "explanation": self.explanation,
            "validation": self.validation.to_dict() if self.validation else None,
            "result": self.result.to_dict() if self.result else None,
            "estimated_rows": int(self.estimated_rows) if self.estimated_rows is not None else None,
            "dry_run": self.dry_run,
            "error": self.error,
            "execution_time": round(self.execution_time, 3),
        }


# =============================================================================
# QUERY PIPELINE
# =============================================================================

class QueryPipeline:
    """
    FLOW:
    1. Generate SQL from the question (ask) or take it as given (run_sql)
    2. Validate; rejected SQL stops here
    3. Estimate the unbounded row count
    4. Dry run -> stop; otherwise execute or preview the rewritten SQL
    5. Audit every outcome

    The schema attribute may be replaced at any time (schema reload); each
    call builds its validator from the catalog current at call time.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        schema: SchemaCatalog,
        settings: Settings,
        generator: Optional[SqlGenerator] = None,
        audit: Optional[AuditLogger] = None,
        connection_profile: Optional[str] = None,
    ):
        self.executor = executor
        self.schema = schema
        self.settings = settings
        self.generator = generator
        self.audit = audit
        self.connection_profile = connection_profile

        logger.info(f"QueryPipeline initialized ({len(schema)} schema objects, "
                    f"generator={'on' if generator else 'off'})")

    def validator(self) -> GuardrailValidator:
        return GuardrailValidator(
            schema=self.schema,
            default_row_limit=self.settings.default_row_limit,
            bound_style=self.settings.bound_style,
        )

    def ask(
        self,
        question: str,
        dry_run: Optional[bool] = None,
        preview: bool = False,
        estimate_rows: bool = True,
    ) -> PipelineResult:
        """
        Answer a natural-language question.

        Raises:
            ValueError: if no generator is configured or the question is blank
        """
        if self.generator is None:
            raise ValueError("SQL generation is not configured (GROQ_API_KEY missing)")

        start = datetime.now()
        dry_run = self.settings.dry_run_by_default if dry_run is None else dry_run
        logger.info(f"[PIPELINE] Question: {question[:80]}")

        try:
            generated = self.generator.generate(question, self.schema)
        except SqlGenerationError as e:
            self._audit(AuditEntry(
                action="generate",
                natural_language_query=question,
                execution_status="not_executed",
                error_message=str(e),
            ))
            return PipelineResult(
                success=False,
                execution_time=self._elapsed(start),
                question=question,
                dry_run=dry_run,
                error=str(e),
            )

        return self._process(
            generated.sql,
            start,
            action="ask",
            question=question,
            explanation=generated.explanation,
            dry_run=dry_run,
            preview=preview,
            estimate_rows=estimate_rows,
        )

    def run_sql(
        self,
        sql: str,
        dry_run: Optional[bool] = None,
        preview: bool = False,
        estimate_rows: bool = True,
    ) -> PipelineResult:
        """Validate and run caller-supplied SQL through the same guardrail."""
        start = datetime.now()
        dry_run = self.settings.dry_run_by_default if dry_run is None else dry_run
        return self._process(
            sql, start, action="run_sql", dry_run=dry_run, preview=preview, estimate_rows=estimate_rows,
        )

    def preview(self, sql: str, row_cap: Optional[int] = None) -> PipelineResult:
        """Validate caller SQL and run it capped at row_cap rows."""
        start = datetime.now()
        return self._process(sql, start, action="preview", preview=True, estimate_rows=False, row_cap=row_cap)

    def count(self, sql: str) -> PipelineResult:
        """Validate caller SQL and estimate its unbounded row count without running it."""
        start = datetime.now()
        return self._process(sql, start, action="count", dry_run=True)

    def _process(
        self,
        sql: str,
        start: datetime,
        action: str,
        question: Optional[str] = None,
        explanation: Optional[str] = None,
        dry_run: bool = False,
        preview: bool = False,
        estimate_rows: bool = True,
        row_cap: Optional[int] = None,
    ) -> PipelineResult:
        validation = self.validator().validate(sql)
        issues = [issue.to_dict() for issue in validation.issues]

        if not validation.is_valid:
            error = "; ".join(issue.message for issue in validation.errors)
            logger.warning(f"[PIPELINE] SQL rejected: {error}")
            self._audit(AuditEntry(
                action=action,
                connection_profile=self.connection_profile,
                natural_language_query=question,
                generated_sql=sql,
                validation_status="rejected",
                validation_issues=issues,
                execution_status="not_executed",
                error_message=error,
            ))
            return PipelineResult(
                success=False,
                execution_time=self._elapsed(start),
                question=question,
                sql=sql,
                explanation=explanation,
                validation=validation,
                dry_run=dry_run,
                error=f"SQL rejected by guardrail: {error}",
            )

        validated_sql = validation.rewritten_sql
        estimated = self.executor.estimate_row_count(validated_sql) if estimate_rows else None

        result = None
        if not dry_run:
            if preview:
                result = self.executor.execute_preview(validated_sql, row_cap or self.settings.preview_row_limit)
            else:
                result = self.executor.execute(validated_sql)

        if result is None:
            execution_status = "dry_run"
        else:
            execution_status = "success" if result.success else "failed"

        row_count = result.row_count if result else None
        if action == "count" and estimated is not None and not estimated.is_unknown:
            row_count = int(estimated)

        self._audit(AuditEntry(
            action=action,
            connection_profile=self.connection_profile,
            natural_language_query=question,
            generated_sql=sql,
            validation_status="passed_with_warnings" if validation.has_warnings else "passed",
            validation_issues=issues,
            execution_status=execution_status,
            row_count=row_count,
            execution_time_ms=result.execution_time_ms if result else None,
            error_message=result.error if result else None,
        ))

        return PipelineResult(
            success=result is None or result.success,
            execution_time=self._elapsed(start),
            question=question,
            sql=sql,
            validated_sql=validated_sql,
            explanation=explanation,
            validation=validation,
            result=result,
            estimated_rows=estimated,
            dry_run=dry_run,
            error=result.error if result else None,
        )

    def _audit(self, entry: AuditEntry) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(entry)
        except SQLAlchemyError as e:
            logger.error(f"[AUDIT] Failed to write audit entry: {e}")

    def _elapsed(self, start: datetime) -> float:
        return (datetime.now() - start).total_seconds()
