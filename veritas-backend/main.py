"""
Veritas SQL Guardrail API
=========================

HTTP surface over the guardrail and its collaborators:
- Natural language -> SQL (Groq) -> guardrail -> execution / preview
- Direct validation, preview and row-count estimation of caller SQL
- Schema inspection and reload
- Audit log access

Every SQL string executed here went through the GuardrailValidator first;
only its rewritten_sql ever reaches the database.
"""

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional
import logging
from datetime import datetime
import asyncio
from contextlib import asynccontextmanager

from audit_log import AuditLogger
from config import get_settings
from query_bounds import to_preview
from query_executor import QueryExecutor
from query_pipeline import QueryPipeline
from row_count import RowCountEstimate, to_count_probe
from schema_loader import load_schema
from sql_generator import SqlGenerator

# Configure logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)  # Keep INFO for our app, WARNING for libraries

for _module in ("sql_lexer", "sql_validator", "query_bounds", "row_count", "query_executor",
                "query_pipeline", "schema_loader", "sql_generator", "audit_log", "config"):
    logging.getLogger(_module).setLevel(logging.INFO)

VERSION = "1.0"

DIALECT_NAMES = {
    "mssql": "Microsoft SQL Server",
    "postgresql": "PostgreSQL",
    "mysql": "MySQL",
    "sqlite": "SQLite",
    "oracle": "Oracle",
}


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, dispose engine on shutdown"""
    try:
        logger.info(f"Initializing Veritas v{VERSION}...")
        settings = get_settings()

        if not settings.database_url:
            raise ValueError("DATABASE_URL not found in environment variables!")

        executor = QueryExecutor.from_url(
            settings.database_url,
            bound_style=settings.bound_style,
            max_rows=settings.max_row_limit,
        )
        schema = await asyncio.to_thread(load_schema, executor.engine)
        logger.info(f"✓ Schema loaded: {len(schema)} objects")

        generator = None
        if settings.llm_enabled:
            dialect = DIALECT_NAMES.get(executor.engine.dialect.name, executor.engine.dialect.name)
            generator = SqlGenerator.from_settings(settings, dialect=dialect)
            logger.info("✓ SQL generator initialized")
        else:
            logger.warning("GROQ_API_KEY not set - /chat is disabled, direct SQL endpoints still work")

        audit = AuditLogger(settings.audit_database_url)

        app.state.settings = settings
        app.state.executor = executor
        app.state.schema = schema
        app.state.generator = generator
        app.state.audit = audit
        app.state.pipeline = QueryPipeline(
            executor=executor,
            schema=schema,
            settings=settings,
            generator=generator,
            audit=audit,
            connection_profile=executor.engine.url.render_as_string(hide_password=True),
        )

        logger.info("=" * 60)
        logger.info(f"Veritas v{VERSION} Ready!")
        logger.info(f"Row limit: {settings.default_row_limit} ({settings.bound_style.value}), "
                    f"dry run by default: {settings.dry_run_by_default}")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Startup failed: {str(e)}")
        raise

    yield  # Server is running

    logger.info("Shutting down Veritas...")
    app.state.executor.dispose()


# Initialize FastAPI with lifespan
app = FastAPI(
    title="Veritas SQL Guardrail API",
    description="Natural language to SQL with a read-only, bounded, schema-checked guardrail",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SqlRequest(BaseModel):
    sql: str


class PreviewRequest(BaseModel):
    sql: str
    row_cap: Optional[int] = Field(default=None, gt=0)


class ExecuteRequest(BaseModel):
    sql: str
    dry_run: Optional[bool] = None
    preview: bool = False


class ChatRequest(BaseModel):
    question: str = Field(min_length=1)
    dry_run: Optional[bool] = None
    preview: bool = False


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name.capitalize()} not initialized")
    return service


def _validate_or_400(request: Request, sql: str):
    pipeline = _service(request, "pipeline")
    validation = pipeline.validator().validate(sql)
    if not validation.is_valid:
        raise HTTPException(status_code=400, detail=validation.to_dict())
    return validation


@app.get("/")
async def root():
    return {
        "message": f"Veritas SQL Guardrail API v{VERSION}",
        "version": VERSION,
        "features": [
            "Read-only SQL guardrail (whitelist, blacklist, single statement)",
            "Schema gate against the live catalog",
            "Automatic row bounds and previews",
            "Row-count estimation",
            "Audit log",
        ],
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        return {"status": "unhealthy", "error": "Pipeline not initialized"}

    return {
        "status": "healthy",
        "version": VERSION,
        "database_objects": len(pipeline.schema),
        "llm_enabled": pipeline.generator is not None,
        "bound_style": pipeline.settings.bound_style.value,
    }


@app.get("/database/schema")
async def get_database_schema(request: Request):
    """Get current schema catalog"""
    schema = _service(request, "schema")
    return {
        "success": True,
        "schema": schema.summary(),
        "schema_text": schema.to_prompt_text(),
    }


@app.post("/database/reload-schema")
async def reload_schema(request: Request):
    """Reload the catalog; in-flight validations keep the old snapshot"""
    executor = _service(request, "executor")
    pipeline = _service(request, "pipeline")
    try:
        schema = await asyncio.to_thread(load_schema, executor.engine)
    except Exception as e:
        logger.error(f"Schema reload failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    request.app.state.schema = schema
    pipeline.schema = schema
    logger.info(f"Schema reloaded: {len(schema)} objects")
    return {"success": True, "object_count": len(schema), "loaded_at": schema.loaded_at.isoformat()}


@app.post("/sql/validate")
async def validate_sql_endpoint(body: SqlRequest, request: Request):
    """Run the guardrail without executing anything"""
    pipeline = _service(request, "pipeline")
    return pipeline.validator().validate(body.sql).to_dict()


@app.post("/sql/preview")
async def preview_sql(body: PreviewRequest, request: Request):
    """Validate, then execute a preview capped at row_cap rows"""
    pipeline = _service(request, "pipeline")
    settings = pipeline.settings
    row_cap = body.row_cap or settings.preview_row_limit

    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(pipeline.preview, body.sql, row_cap),
            timeout=settings.query_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("Preview timed out")
        raise HTTPException(status_code=504, detail="Preview timed out")

    validation = result.validation
    if not validation.is_valid:
        raise HTTPException(status_code=400, detail=validation.to_dict())

    return {
        "validation": validation.to_dict(),
        "preview_sql": to_preview(validation.rewritten_sql, row_cap, settings.bound_style),
        "result": result.result.to_dict(),
    }


@app.post("/sql/count")
async def count_sql(body: SqlRequest, request: Request):
    """Validate, then estimate how many rows the unbounded query returns"""
    pipeline = _service(request, "pipeline")

    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(pipeline.count, body.sql),
            timeout=pipeline.settings.count_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("Count probe timed out - row count unknown")
        validation = _validate_or_400(request, body.sql)
        estimate = RowCountEstimate.unknown()
    else:
        validation = result.validation
        if not validation.is_valid:
            raise HTTPException(status_code=400, detail=validation.to_dict())
        estimate = result.estimated_rows

    probe = to_count_probe(validation.rewritten_sql)
    return {
        "estimated_rows": int(estimate),
        "is_unknown": estimate.is_unknown,
        "count_sql": probe.sql,
        "reason": probe.reason,
    }


@app.post("/sql/execute")
async def execute_sql(body: ExecuteRequest, request: Request):
    """Validate and execute caller SQL (dry run unless requested otherwise)"""
    pipeline = _service(request, "pipeline")
    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(pipeline.run_sql, body.sql, body.dry_run, body.preview),
            timeout=pipeline.settings.query_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("Query execution timed out")
        raise HTTPException(status_code=504, detail="Query timed out")

    if result.validation is not None and not result.validation.is_valid:
        raise HTTPException(status_code=400, detail=result.to_dict())
    return result.to_dict()


@app.post("/chat")
async def chat(body: ChatRequest, request: Request):
    """Natural language question -> guarded SQL -> result"""
    pipeline = _service(request, "pipeline")
    if pipeline.generator is None:
        raise HTTPException(status_code=503, detail="SQL generation not configured (GROQ_API_KEY missing)")

    start_time = datetime.now()
    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(pipeline.ask, body.question, body.dry_run, body.preview),
            timeout=pipeline.settings.query_timeout_seconds,
        )
    except asyncio.TimeoutError:
        elapsed = (datetime.now() - start_time).total_seconds()
        logger.warning(f"Chat request timed out after {elapsed:.1f}s")
        raise HTTPException(status_code=504, detail="Groq server seems busy or timed out. Please try again.")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return result.to_dict()


@app.get("/audit")
async def get_audit_log(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
):
    """Most recent audit entries"""
    audit = _service(request, "audit")
    entries = await asyncio.to_thread(audit.recent, limit, since, until)
    return {"count": len(entries), "entries": [entry.to_dict() for entry in entries]}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
