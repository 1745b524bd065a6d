"""
Veritas - SQL Guardrail Validator
=================================

PURPOSE:
The policy boundary between untrusted, LLM-generated SQL text and real
execution. A candidate either comes out as a single bounded read-only query
against objects known to exist, or it is rejected with a list of issues.

CHECK ORDER (fixed; every group short-circuits the rest on failure):
    1. Emptiness               blank text                       -> ERROR
    2. Read-only whitelist     must start with SELECT           -> ERROR
    3. Token blacklist         mutation / exec / txn / comments -> ERROR each
    4. Single statement        one statement, literals closed   -> ERROR
    5. Schema gate             FROM/JOIN/APPLY sources exist    -> ERROR each
    6. Row bound               inject TOP/LIMIT when missing    -> INFO
    7. Advisories              missing filter, SELECT *         -> WARNING

WHAT THIS IS NOT:
- NOT SQL repair. Policy and schema violations are terminal; the caller has
  to ask the generator for a new candidate.
- NOT a full SQL parser. Checks are bounded scans over the shared lexer
  (sql_lexer.py), so every rule agrees on what is inside a string literal.
- NOT semantic validation. A query can pass and still answer the wrong
  question.

The blacklist deliberately runs before the multi-statement check, so a
forbidden statement hidden after a ';' is reported by name.

The validator holds no mutable state and is safe to share across threads
as long as the schema catalog it was given is not mutated.
"""

import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import sqlparse

from sql_lexer import (
    Token,
    TokenKind,
    tokenize,
    significant,
    split_statements,
    first_unterminated,
    unquote_name,
)
from query_bounds import BoundStyle, RowBound, find_row_bound, inject_row_bound
from schema_catalog import SchemaCatalog

logger = logging.getLogger(__name__)


class IssueSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class IssueCategory(Enum):
    INPUT_ERROR = "input_error"
    POLICY_VIOLATION = "policy_violation"
    SCHEMA_VIOLATION = "schema_violation"
    BOUND_INJECTED = "bound_injected"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class ValidationIssue:
    severity: IssueSeverity
    category: IssueCategory
    message: str
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "category": self.category.value,
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass
class ValidationResult:
    """
    Result of guardrail validation.

    Attributes:
        original_sql: The candidate text exactly as received
        rewritten_sql: Text to execute; equals original_sql unless a row
            bound was injected
        issues: Findings in detection order

    is_valid is derived from the issues: False iff any ERROR is present.
    """
    original_sql: str
    rewritten_sql: str
    issues: List[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.WARNING]

    @property
    def infos(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.INFO]

    @property
    def has_errors(self) -> bool:
        return any(i.severity is IssueSeverity.ERROR for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(i.severity is IssueSeverity.WARNING for i in self.issues)

    @property
    def was_rewritten(self) -> bool:
        return self.rewritten_sql != self.original_sql

    def add(
        self,
        severity: IssueSeverity,
        category: IssueCategory,
        message: str,
        suggestion: Optional[str] = None,
    ) -> None:
        self.issues.append(ValidationIssue(severity, category, message, suggestion))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "original_sql": self.original_sql,
            "rewritten_sql": self.rewritten_sql,
            "was_rewritten": self.was_rewritten,
            "issues": [i.to_dict() for i in self.issues],
        }


# =============================================================================
# POLICY TABLES
# =============================================================================

READ_KEYWORDS = ("SELECT",)

_FORBIDDEN_KEYWORDS = {
    # mutation
    "INSERT": "data modification",
    "UPDATE": "data modification",
    "DELETE": "data modification",
    "MERGE": "data modification",
    "DROP": "schema modification",
    "ALTER": "schema modification",
    "CREATE": "schema modification",
    "TRUNCATE": "data modification",
    "INTO": "SELECT ... INTO creates a table",
    # procedure execution
    "EXEC": "procedure execution",
    "EXECUTE": "procedure execution",
    # transaction / flow control
    "DECLARE": "flow control",
    "CURSOR": "flow control",
    "BEGIN": "transaction control",
    "COMMIT": "transaction control",
    "ROLLBACK": "transaction control",
    "GRANT": "permission change",
    "REVOKE": "permission change",
    # external data access
    "OPENROWSET": "external data access",
    "OPENQUERY": "external data access",
    "OPENDATASOURCE": "external data access",
}

FORBIDDEN_KEYWORDS = tuple(_FORBIDDEN_KEYWORDS)
FORBIDDEN_PREFIXES = ("SP_", "XP_")

# Keywords that are never table names or aliases.
_SOURCE_STOP_WORDS = frozenset({
    "WHERE", "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS", "OUTER",
    "NATURAL", "ON", "USING", "GROUP", "ORDER", "HAVING", "UNION",
    "INTERSECT", "EXCEPT", "MINUS", "OFFSET", "FETCH", "LIMIT", "FOR",
    "OPTION", "WITH", "APPLY", "PIVOT", "UNPIVOT", "WINDOW", "LATERAL",
    "TABLESAMPLE", "AS", "SELECT", "VALUES",
})

_NAME_KINDS = (TokenKind.WORD, TokenKind.QUOTED_NAME)


def _forbidden_label(token: Token) -> List[str]:
    """Forbidden markers carried by one token, in source order."""
    if token.kind is TokenKind.WORD:
        word = token.upper
        if word in _FORBIDDEN_KEYWORDS or word.startswith(FORBIDDEN_PREFIXES):
            return [word]
        return []
    if token.kind is TokenKind.LINE_COMMENT:
        return ["--"]
    if token.kind is TokenKind.BLOCK_COMMENT:
        return ["/*", "*/"] if token.terminated else ["/*"]
    if token.kind is TokenKind.COMMENT_CLOSE:
        return ["*/"]
    return []


def _forbidden_reason(label: str) -> str:
    if label in _FORBIDDEN_KEYWORDS:
        return _FORBIDDEN_KEYWORDS[label]
    if label.startswith(FORBIDDEN_PREFIXES):
        return "system procedure execution"
    return "comment / statement injection marker"


# =============================================================================
# OBJECT REFERENCE EXTRACTION
# =============================================================================
# Bounded token scan, not a parser. Each parenthesis level keeps a scope:
#   - FROM, JOIN and APPLY open the source list of the current query level
#   - while it is open, every ',' at that level starts another source, also
#     after a JOIN ... ON condition or a derived table alias
#   - WHERE, GROUP, ORDER, HAVING, set operators and the like close it
#   - FROM only counts at statement level or inside a (SELECT ...) paren, so
#     EXTRACT(YEAR FROM d) and SUBSTRING(x FROM 2) are ignored
#   - IS [NOT] DISTINCT FROM is a comparison, not a source
#   - a '(' in source position is a derived table or a parenthesized join;
#     its contents are scanned as their own query level
#   - a name followed by '(' is a table-valued function and is reported as is
# =============================================================================

_SOURCE_OPENERS = ("FROM", "JOIN", "APPLY")

_SOURCE_CLOSERS = (
    "WHERE", "GROUP", "ORDER", "HAVING", "UNION", "INTERSECT", "EXCEPT",
    "MINUS", "OFFSET", "FETCH", "LIMIT", "FOR", "OPTION", "WINDOW",
    "QUALIFY", "SELECT", "INTO",
)


@dataclass
class _Scope:
    """Scan state of one parenthesis level."""
    is_query: bool
    in_sources: bool = False
    expect_source: bool = False


def _read_dotted_name(sig: List[Token], i: int):
    parts: List[str] = []
    n = len(sig)
    while i < n and sig[i].kind in _NAME_KINDS:
        token = sig[i]
        if not parts and token.kind is TokenKind.WORD and token.upper in _SOURCE_STOP_WORDS:
            break
        parts.append(unquote_name(token.text))
        i += 1
        if i < n and sig[i].is_punct("."):
            while i < n and sig[i].is_punct("."):
                i += 1
            continue
        break
    return parts, i


def extract_referenced_objects(tokens: List[Token]) -> List[List[str]]:
    """
    Collect object names referenced as FROM / JOIN / APPLY sources.

    Returns:
        One list of undecorated name parts per reference, in source order
        (e.g. [["dbo", "Orders"], ["Customers"]])
    """
    sig = significant(tokens)
    refs: List[List[str]] = []
    scopes: List[_Scope] = [_Scope(is_query=True)]
    n = len(sig)
    i = 0

    while i < n:
        token = sig[i]
        scope = scopes[-1]
        expecting = scope.expect_source
        scope.expect_source = False

        if token.is_punct("("):
            following = sig[i + 1] if i + 1 < n else None
            if following is not None and following.is_word("SELECT", "WITH"):
                scopes.append(_Scope(is_query=True))
            elif expecting:
                # Parenthesized join: FROM (a JOIN b ON ...)
                scopes.append(_Scope(is_query=True, in_sources=True, expect_source=True))
            else:
                scopes.append(_Scope(is_query=False))
            i += 1
            continue

        if token.is_punct(")"):
            if len(scopes) > 1:
                scopes.pop()
            i += 1
            continue

        if expecting and token.kind in _NAME_KINDS:
            parts, end = _read_dotted_name(sig, i)
            if parts:
                refs.append(parts)
                i = end
                continue

        if not scope.is_query:
            i += 1
            continue

        if token.is_word(*_SOURCE_OPENERS):
            is_distinct_from = token.is_word("FROM") and i > 0 and sig[i - 1].is_word("DISTINCT")
            if not is_distinct_from:
                scope.in_sources = True
                scope.expect_source = True
        elif token.is_word(*_SOURCE_CLOSERS):
            scope.in_sources = False
        elif token.is_punct(",") and scope.in_sources:
            scope.expect_source = True

        i += 1

    return refs


# =============================================================================
# GUARDRAIL VALIDATOR
# =============================================================================

class GuardrailValidator:
    """
    Accepts, rejects or bounds candidate SQL.

    Args:
        schema: Catalog of known objects; None disables the schema gate
        default_row_limit: Bound injected when the query has none
        bound_style: Clause form used for injection (TOP for SQL Server)
    """

    def __init__(
        self,
        schema: Optional[SchemaCatalog] = None,
        default_row_limit: int = 100,
        bound_style: BoundStyle = BoundStyle.TOP,
    ):
        if isinstance(default_row_limit, bool) or not isinstance(default_row_limit, int) \
                or default_row_limit <= 0:
            raise ValueError(f"default_row_limit must be a positive integer, got {default_row_limit!r}")
        self.schema = schema
        self.default_row_limit = default_row_limit
        self.bound_style = bound_style

    def validate(self, sql: str) -> ValidationResult:
        """
        Validate candidate SQL.

        Args:
            sql: Untrusted SQL text from the generator

        Returns:
            ValidationResult; rewritten_sql is always populated
        """
        sql = sql if sql is not None else ""
        result = ValidationResult(original_sql=sql, rewritten_sql=sql)

        # 1. Emptiness
        if not sql.strip():
            result.add(
                IssueSeverity.ERROR,
                IssueCategory.INPUT_ERROR,
                "SQL query is empty",
            )
            logger.warning("[GUARDRAIL] REJECTED: empty SQL")
            return result

        tokens = tokenize(sql)

        # 2. Read-only whitelist
        if not self._check_read_only(tokens, result):
            return result

        # 3. Token blacklist
        if not self._check_blacklist(tokens, result):
            return result

        # 4. Single statement
        if not self._check_single_statement(tokens, result):
            return result

        # 5. Schema gate
        if self.schema is not None and not self._check_schema(tokens, result):
            return result

        # 6. Row bound
        bound = find_row_bound(tokens)
        if bound is None:
            self._inject_bound(sql, tokens, result)

        # 7. Advisories
        self._add_advisories(tokens, bound, result)

        logger.debug(
            f"[GUARDRAIL] PASSED with {len(result.warnings)} warning(s), "
            f"rewritten={result.was_rewritten}"
        )
        return result

    def _check_read_only(self, tokens: List[Token], result: ValidationResult) -> bool:
        first = next(t for t in tokens if t.kind is not TokenKind.WHITESPACE)
        if first.is_word(*READ_KEYWORDS):
            return True

        found = first.upper if first.kind is TokenKind.WORD else first.text[:20]
        result.add(
            IssueSeverity.ERROR,
            IssueCategory.POLICY_VIOLATION,
            f"Only SELECT statements are allowed (found {found})",
            "The query must start with SELECT",
        )
        logger.warning(f"[GUARDRAIL] REJECTED: non-read statement ({found})")
        return False

    def _check_blacklist(self, tokens: List[Token], result: ValidationResult) -> bool:
        seen: List[str] = []
        for token in tokens:
            for label in _forbidden_label(token):
                if label not in seen:
                    seen.append(label)

        for label in seen:
            result.add(
                IssueSeverity.ERROR,
                IssueCategory.POLICY_VIOLATION,
                f"Forbidden keyword found: {label} ({_forbidden_reason(label)})",
                "This keyword is not allowed for security reasons",
            )

        if seen:
            logger.warning(f"[GUARDRAIL] REJECTED: forbidden tokens {seen}")
            return False
        return True

    def _check_single_statement(self, tokens: List[Token], result: ValidationResult) -> bool:
        unterminated = first_unterminated(tokens)
        if unterminated is not None:
            result.add(
                IssueSeverity.ERROR,
                IssueCategory.POLICY_VIOLATION,
                f"Unterminated or ambiguous literal starting at position {unterminated.start}",
                "Close every quoted string and avoid backslash or E-prefixed escapes",
            )
            logger.warning("[GUARDRAIL] REJECTED: unterminated or ambiguous literal")
            return False

        statements = split_statements(tokens)
        if len(statements) > 1:
            result.add(
                IssueSeverity.ERROR,
                IssueCategory.POLICY_VIOLATION,
                f"Multiple statements are not allowed ({len(statements)} found)",
                "Please execute only one SELECT statement",
            )
            logger.warning(f"[GUARDRAIL] REJECTED: {len(statements)} statements")
            return False
        return True

    def _check_schema(self, tokens: List[Token], result: ValidationResult) -> bool:
        unresolved: List[str] = []
        for parts in extract_referenced_objects(tokens):
            if self.schema.resolve(parts) is None:
                name = ".".join(parts)
                if name.lower() not in (u.lower() for u in unresolved):
                    unresolved.append(name)

        for name in unresolved:
            result.add(
                IssueSeverity.ERROR,
                IssueCategory.SCHEMA_VIOLATION,
                f"Table/View '{name}' does not exist in schema",
                "Check the table name or reload the schema",
            )

        if unresolved:
            logger.warning(f"[GUARDRAIL] REJECTED: unknown objects {unresolved}")
            return False
        return True

    def _inject_bound(self, sql: str, tokens: List[Token], result: ValidationResult) -> None:
        limit = self.default_row_limit
        result.rewritten_sql = inject_row_bound(sql, limit, self.bound_style, tokens)

        if self.bound_style is BoundStyle.TOP:
            clause = f"TOP {limit}"
        elif self.bound_style is BoundStyle.LIMIT:
            clause = f"LIMIT {limit}"
        else:
            clause = f"FETCH FIRST {limit} ROWS ONLY"

        result.add(
            IssueSeverity.INFO,
            IssueCategory.BOUND_INJECTED,
            f"{clause} was automatically added",
            "Explicitly add a row limit to control the number of rows",
        )
        logger.info(f"[BOUNDING] Injected {clause}")

    def _add_advisories(
        self,
        tokens: List[Token],
        bound: Optional[RowBound],
        result: ValidationResult,
    ) -> None:
        sig = significant(tokens)

        # A query the author already bounded is not "returning all rows".
        if bound is None and not _has_top_level_where(result.original_sql):
            result.add(
                IssueSeverity.WARNING,
                IssueCategory.ADVISORY,
                "No WHERE clause found - might return all rows",
                "Consider adding a WHERE clause to filter the results",
            )

        if _has_unrestricted_projection(sig):
            result.add(
                IssueSeverity.WARNING,
                IssueCategory.ADVISORY,
                "SELECT * found - consider selecting only needed columns",
                "Explicit column names improve performance and clarity",
            )


def _has_top_level_where(sql: str) -> bool:
    """Structural WHERE detection via the sqlparse token tree."""
    parsed = sqlparse.parse(sql)
    if not parsed:
        return False
    return any(isinstance(token, sqlparse.sql.Where) for token in parsed[0].tokens)


def _has_unrestricted_projection(sig: List[Token]) -> bool:
    """True if the outermost projection selects '*' or 'alias.*'."""
    n = len(sig)
    i = 1
    if i < n and sig[i].is_word("DISTINCT", "ALL"):
        i += 1
    if i < n and sig[i].is_word("TOP"):
        i += 1
        if i < n and sig[i].is_punct("("):
            while i < n and not (sig[i].is_punct(")") and sig[i].depth == 0):
                i += 1
            i += 1
        elif i < n:
            i += 1
        if i < n and sig[i].is_word("PERCENT"):
            i += 1
        if i + 1 < n and sig[i].is_word("WITH") and sig[i + 1].is_word("TIES"):
            i += 2

    start = i
    for j in range(start, n):
        token = sig[j]
        if token.depth == 0 and token.is_word("FROM"):
            break
        if token.depth == 0 and token.is_operator("*"):
            previous = sig[j - 1] if j > start else None
            if previous is None or previous.is_punct(",") or previous.is_punct("."):
                return True
    return False


def validate_sql(
    sql: str,
    schema: Optional[SchemaCatalog] = None,
    default_row_limit: int = 100,
    bound_style: BoundStyle = BoundStyle.TOP,
) -> ValidationResult:
    """Convenience function to run the guardrail once."""
    validator = GuardrailValidator(schema, default_row_limit, bound_style)
    return validator.validate(sql)
