"""
Veritas - Natural Language to SQL Generator
===========================================

One-shot LLM call (no agent, no tools, no retries) that turns a question into
candidate SQL. The output is UNTRUSTED: it always goes through the
GuardrailValidator before anything executes.

The prompt embeds the schema catalog and an optional domain dictionary
(business synonym -> actual object or column name) and asks for JSON:

    {"sql": "...", "explanation": "...", "tables_used": ["dbo.Orders"]}
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from query_bounds import BoundStyle
from schema_catalog import SchemaCatalog

logger = logging.getLogger(__name__)


class SqlGenerationError(RuntimeError):
    """The LLM call failed or its reply contained no SQL."""


@dataclass
class GeneratedSql:
    sql: str
    explanation: str = ""
    tables_used: List[str] = field(default_factory=list)
    raw_response: str = ""


_BOUND_RULES = {
    BoundStyle.TOP: "Always add TOP N after SELECT (default: TOP {limit})",
    BoundStyle.LIMIT: "Always end the query with LIMIT N (default: LIMIT {limit})",
    BoundStyle.FETCH: "Always end the query with FETCH FIRST N ROWS ONLY (default: {limit})",
}


def _strip_code_fences(text: str) -> str:
    # Handle cases where the LLM wraps the answer in markdown code blocks
    if "```json" in text:
        return text.split("```json")[1].split("```")[0].strip()
    if "```sql" in text:
        return text.split("```sql")[1].split("```")[0].strip()
    if "```" in text:
        return text.split("```")[1].split("```")[0].strip()
    return text.strip()


def parse_llm_response(response_text: str) -> GeneratedSql:
    """
    Parse the LLM reply into GeneratedSql.

    Accepts the JSON format, and falls back to a bare SELECT statement when
    the model ignored the format instructions.

    Raises:
        SqlGenerationError: if no SQL can be found in the reply
    """
    body = _strip_code_fences(response_text)

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        payload = None

    if isinstance(payload, dict):
        sql = str(payload.get("sql") or "").strip()
        if not sql:
            raise SqlGenerationError("LLM response contained no SQL")
        tables = payload.get("tables_used") or []
        if not isinstance(tables, list):
            tables = [str(tables)]
        return GeneratedSql(
            sql=sql,
            explanation=str(payload.get("explanation") or ""),
            tables_used=[str(t) for t in tables],
            raw_response=response_text,
        )

    if body.upper().startswith("SELECT"):
        logger.warning("[SQL_GEN] LLM ignored JSON format; using raw SQL reply")
        return GeneratedSql(sql=body, raw_response=response_text)

    raise SqlGenerationError(f"Could not parse LLM response: {response_text[:200]}")


class SqlGenerator:
    """
    Generates candidate SQL from natural language.

    Args:
        llm: Any llama-index LLM exposing complete(prompt)
        dialect: Human-readable SQL dialect named in the prompt
        bound_style: Bound form the model is asked to use
        default_row_limit: Bound value suggested to the model
        domain_dictionary: Business synonym -> actual schema name
    """

    def __init__(
        self,
        llm,
        dialect: str = "Microsoft SQL Server",
        bound_style: BoundStyle = BoundStyle.TOP,
        default_row_limit: int = 100,
        domain_dictionary: Optional[Dict[str, str]] = None,
    ):
        self.llm = llm
        self.dialect = dialect
        self.bound_style = bound_style
        self.default_row_limit = default_row_limit
        self.domain_dictionary = dict(domain_dictionary or {})

    @classmethod
    def from_settings(cls, settings, dialect: str = "Microsoft SQL Server") -> "SqlGenerator":
        """Build a generator backed by Groq (requires GROQ_API_KEY)."""
        from llama_index.llms.groq import Groq

        if not settings.groq_api_key:
            raise ValueError("GROQ_API_KEY is not configured")

        llm = Groq(
            model=settings.groq_model,
            api_key=settings.groq_api_key,
            temperature=0.0,  # Deterministic
        )
        logger.info(f"[SQL_GEN] Groq LLM initialized: {settings.groq_model}")
        return cls(
            llm,
            dialect=dialect,
            bound_style=settings.bound_style,
            default_row_limit=settings.default_row_limit,
        )

    def build_prompt(self, question: str, catalog: SchemaCatalog) -> str:
        bound_rule = _BOUND_RULES[self.bound_style].format(limit=self.default_row_limit)

        dictionary_section = ""
        if self.domain_dictionary:
            entries = "\n".join(f"- '{k}' means {v}" for k, v in self.domain_dictionary.items())
            dictionary_section = f"\nDOMAIN DICTIONARY (business terms):\n{entries}\n"

        return f"""You are an SQL expert for {self.dialect}.
Generate only SELECT statements. No DML (INSERT, UPDATE, DELETE) or DDL (CREATE, DROP, ALTER).

RULES:
1. Use fully qualified object names (Schema.Table) where the schema has one
2. {bound_rule}
3. Only use tables/views from the provided schema
4. No multiple statements (no semicolons)
5. No comments and no dangerous functions (EXEC, xp_cmdshell, etc.)

{catalog.to_prompt_text()}
{dictionary_section}
QUESTION:
{question}

RESPONSE FORMAT (JSON only):
{{
    "sql": "SELECT ...",
    "explanation": "short explanation of what the query does",
    "tables_used": ["Schema.Table"]
}}

Respond with ONLY the JSON object, nothing else."""

    def generate(self, question: str, catalog: SchemaCatalog) -> GeneratedSql:
        """
        Generate candidate SQL for ``question``.

        Raises:
            ValueError: if the question is blank
            SqlGenerationError: if the LLM call fails or returns no SQL
        """
        if not question or not question.strip():
            raise ValueError("question must be a non-empty string")

        prompt = self.build_prompt(question.strip(), catalog)

        try:
            response = self.llm.complete(prompt)
        except Exception as e:
            logger.error(f"[SQL_GEN] LLM call failed: {e}")
            raise SqlGenerationError(f"LLM request failed: {e}") from e

        generated = parse_llm_response(str(response).strip())
        logger.info(f"[SQL_GEN] Generated SQL ({len(generated.sql)} chars)")
        return generated
