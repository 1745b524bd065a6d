"""
Veritas - Runtime Configuration
===============================

All settings come from the environment (optionally a .env file loaded with
python-dotenv). Malformed values fail fast at startup with a ValueError that
names the offending variable.

ENVIRONMENT VARIABLES
---------------------
DATABASE_URL           SQLAlchemy URL of the target database
GROQ_API_KEY           Groq API key (SQL generation disabled when unset)
GROQ_MODEL             Groq model name
DEFAULT_ROW_LIMIT      Bound injected by the guardrail            (100)
MAX_ROW_LIMIT          Hard cap on rows fetched per query          (10000)
PREVIEW_ROW_LIMIT      Row cap used for previews                   (5)
QUERY_TIMEOUT_SECONDS  Execution timeout                           (30)
COUNT_TIMEOUT_SECONDS  Count-probe timeout                         (5)
SQL_BOUND_STYLE        top | limit | fetch                         (top)
AUDIT_DATABASE_URL     SQLAlchemy URL of the audit log             (sqlite:///veritas_audit.db)
DRY_RUN_BY_DEFAULT     Validate without executing unless asked     (true)
"""

import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional

from dotenv import load_dotenv

from query_bounds import BoundStyle

logger = logging.getLogger(__name__)

DEFAULT_GROQ_MODEL = "llama-3.3-70b-versatile"
DEFAULT_AUDIT_DATABASE_URL = "sqlite:///veritas_audit.db"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def _get_int(environ: Mapping[str, str], name: str, default: int, minimum: int = 1) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got {raw!r}")


def _get_bound_style(environ: Mapping[str, str], name: str) -> BoundStyle:
    raw = (environ.get(name) or BoundStyle.TOP.value).strip().lower()
    try:
        return BoundStyle(raw)
    except ValueError:
        allowed = ", ".join(style.value for style in BoundStyle)
        raise ValueError(f"{name} must be one of {allowed}, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    groq_api_key: Optional[str] = None
    groq_model: str = DEFAULT_GROQ_MODEL
    default_row_limit: int = 100
    max_row_limit: int = 10000
    preview_row_limit: int = 5
    query_timeout_seconds: int = 30
    count_timeout_seconds: int = 5
    bound_style: BoundStyle = BoundStyle.TOP
    audit_database_url: str = DEFAULT_AUDIT_DATABASE_URL
    dry_run_by_default: bool = True

    def __post_init__(self):
        if self.default_row_limit > self.max_row_limit:
            raise ValueError(
                f"DEFAULT_ROW_LIMIT ({self.default_row_limit}) cannot exceed "
                f"MAX_ROW_LIMIT ({self.max_row_limit})"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``environ`` (defaults to os.environ)."""
        if environ is None:
            environ = os.environ

        return cls(
            database_url=environ.get("DATABASE_URL") or None,
            groq_api_key=environ.get("GROQ_API_KEY") or None,
            groq_model=environ.get("GROQ_MODEL") or DEFAULT_GROQ_MODEL,
            default_row_limit=_get_int(environ, "DEFAULT_ROW_LIMIT", 100),
            max_row_limit=_get_int(environ, "MAX_ROW_LIMIT", 10000),
            preview_row_limit=_get_int(environ, "PREVIEW_ROW_LIMIT", 5),
            query_timeout_seconds=_get_int(environ, "QUERY_TIMEOUT_SECONDS", 30),
            count_timeout_seconds=_get_int(environ, "COUNT_TIMEOUT_SECONDS", 5),
            bound_style=_get_bound_style(environ, "SQL_BOUND_STYLE"),
            audit_database_url=environ.get("AUDIT_DATABASE_URL") or DEFAULT_AUDIT_DATABASE_URL,
            dry_run_by_default=_get_bool(environ, "DRY_RUN_BY_DEFAULT", True),
        )

    @property
    def llm_enabled(self) -> bool:
        return bool(self.groq_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load .env and the process environment once."""
    load_dotenv()
    settings = Settings.from_env()
    logger.info(
        f"[CONFIG] row_limit={settings.default_row_limit} "
        f"preview={settings.preview_row_limit} bound={settings.bound_style.value} "
        f"llm={'on' if settings.llm_enabled else 'off'}"
    )
    return settings
