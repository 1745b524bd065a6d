"""
Veritas - Schema Loader
=======================

Builds a SchemaCatalog from a live database through SQLAlchemy's inspector.

Every user schema is loaded (system schemas excluded). On engines without
schemas (SQLite) the default schema is loaded and objects are named without
a prefix unless the dialect reports a default schema name.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from schema_catalog import Column, ForeignKey, SchemaCatalog, Table, View

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = frozenset({
    "information_schema", "pg_catalog", "pg_toast", "mysql", "sys",
    "performance_schema", "guest", "db_owner", "db_accessadmin",
    "db_securityadmin", "db_ddladmin", "db_backupoperator", "db_datareader",
    "db_datawriter", "db_denydatareader", "db_denydatawriter",
})


def _is_system_schema(name: str) -> bool:
    lowered = name.lower()
    return lowered in SYSTEM_SCHEMAS or lowered.startswith(("pg_temp", "pg_toast_temp"))


def _load_columns(inspector, name: str, schema: Optional[str]) -> List[Column]:
    try:
        pk_columns = set(inspector.get_pk_constraint(name, schema=schema).get("constrained_columns") or [])
    except NotImplementedError:
        # Views on some dialects
        pk_columns = set()

    columns = []
    for col in inspector.get_columns(name, schema=schema):
        col_type = col["type"]
        columns.append(Column(
            name=col["name"],
            data_type=str(col_type),
            nullable=bool(col.get("nullable", True)),
            primary_key=col["name"] in pk_columns,
            max_length=getattr(col_type, "length", None),
            description=col.get("comment"),
        ))
    return columns


def _load_foreign_keys(inspector, name: str, schema: Optional[str]) -> List[ForeignKey]:
    foreign_keys = []
    for fk in inspector.get_foreign_keys(name, schema=schema):
        referred_schema = fk.get("referred_schema")
        referred = fk["referred_table"]
        if referred_schema:
            referred = f"{referred_schema}.{referred}"
        for column, referred_column in zip(fk["constrained_columns"], fk["referred_columns"]):
            foreign_keys.append(ForeignKey(
                name=fk.get("name") or f"fk_{name}_{column}",
                column=column,
                referenced_table=referred,
                referenced_column=referred_column,
            ))
    return foreign_keys


def load_schema(engine: Engine, schemas: Optional[Iterable[str]] = None) -> SchemaCatalog:
    """
    Introspect ``engine`` into a SchemaCatalog.

    Args:
        engine: SQLAlchemy engine of the target database
        schemas: Schemas to load; defaults to every non-system schema

    Raises:
        SQLAlchemyError: if the database cannot be inspected
    """
    inspector = inspect(engine)
    default_schema = inspector.default_schema_name

    if schemas is None:
        try:
            schema_names = [s for s in inspector.get_schema_names() if not _is_system_schema(s)]
        except (NotImplementedError, SQLAlchemyError):
            schema_names = []
        if not schema_names:
            schema_names = [default_schema]
    else:
        schema_names = list(schemas)

    tables: List[Table] = []
    views: List[View] = []

    for schema in schema_names:
        # SQLite reports "main"; objects there are referenced without a prefix
        unprefixed = engine.dialect.name == "sqlite" and schema == default_schema
        prefix = "" if unprefixed else (schema or "")
        query_schema = None if unprefixed else schema

        for table_name in inspector.get_table_names(schema=query_schema):
            tables.append(Table(
                schema=prefix,
                name=table_name,
                columns=tuple(_load_columns(inspector, table_name, query_schema)),
                foreign_keys=tuple(_load_foreign_keys(inspector, table_name, query_schema)),
            ))

        for view_name in inspector.get_view_names(schema=query_schema):
            views.append(View(
                schema=prefix,
                name=view_name,
                columns=tuple(_load_columns(inspector, view_name, query_schema)),
            ))

    catalog = SchemaCatalog(
        tables=tuple(tables),
        views=tuple(views),
        database_name=engine.url.database or "",
    )
    logger.info(
        f"[SCHEMA] Loaded {len(tables)} tables, {len(views)} views "
        f"from {len(schema_names)} schema(s)"
    )
    return catalog
