"""
Veritas - Schema Catalog
========================

Immutable, session-scoped snapshot of the database objects the guardrail is
allowed to reference. Built once per connection by the schema loader and only
ever replaced by reference, never mutated in place, so validation calls can
share it across threads without locking.

Object identity is the (schema, name) pair compared case-insensitively.
"""

import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from sql_lexer import unquote_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Column:
    name: str
    data_type: str
    nullable: bool = True
    primary_key: bool = False
    max_length: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class ForeignKey:
    name: str
    column: str
    referenced_table: str
    referenced_column: str


@dataclass(frozen=True)
class DatabaseObject:
    """Common shape of tables and views."""
    schema: str
    name: str
    columns: Tuple[Column, ...] = ()

    kind = "object"

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    @property
    def key(self) -> Tuple[str, str]:
        return (self.schema.lower(), self.name.lower())

    def column(self, name: str) -> Optional[Column]:
        wanted = name.lower()
        return next((c for c in self.columns if c.name.lower() == wanted), None)

    @property
    def primary_key_columns(self) -> List[str]:
        return [c.name for c in self.columns if c.primary_key]


@dataclass(frozen=True)
class Table(DatabaseObject):
    foreign_keys: Tuple[ForeignKey, ...] = ()

    kind = "table"


@dataclass(frozen=True)
class View(DatabaseObject):
    kind = "view"


@dataclass(frozen=True)
class SchemaCatalog:
    """
    Ordered, read-only collection of tables and views.

    Raises:
        ValueError: if two objects share the same (schema, name) identity
    """
    tables: Tuple[Table, ...] = ()
    views: Tuple[View, ...] = ()
    database_name: str = ""
    loaded_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        # Frozen dataclass: the lookup indexes are attached once, here.
        by_key: Dict[Tuple[str, str], DatabaseObject] = {}
        by_name: Dict[str, List[DatabaseObject]] = {}

        for obj in self.all_objects():
            if obj.key in by_key:
                raise ValueError(f"Duplicate object in schema catalog: {obj.full_name}")
            by_key[obj.key] = obj
            by_name.setdefault(obj.name.lower(), []).append(obj)

        object.__setattr__(self, "_by_key", by_key)
        object.__setattr__(self, "_by_name", by_name)

    def all_objects(self) -> Iterator[DatabaseObject]:
        yield from self.tables
        yield from self.views

    def __len__(self) -> int:
        return len(self.tables) + len(self.views)

    def __iter__(self) -> Iterator[DatabaseObject]:
        return self.all_objects()

    def find(self, name: str) -> Optional[DatabaseObject]:
        """
        Resolve a referenced object name.

        Accepts bare names ("Customers"), schema-qualified names
        ("dbo.Customers") and database-qualified names ("Shop.dbo.Customers")
        whose database part is this catalog's database. Other databases and
        four-part names never resolve. Bracket and quote decoration is
        stripped per part. Matching is case-insensitive.
        """
        return self.resolve(name.split("."))

    def resolve(self, parts: Sequence[str]) -> Optional[DatabaseObject]:
        """Resolve an already-split dotted name (needed for [names.with.dots])."""
        parts = [unquote_name(p.strip()).strip() for p in parts]
        parts = [p for p in parts if p]
        if not parts:
            return None

        if len(parts) == 1:
            matches = self._by_name.get(parts[0].lower(), [])
            return matches[0] if matches else None

        if len(parts) > 3:
            # server.database.schema.object points at another server
            return None
        if len(parts) == 3 and parts[0].lower() != self.database_name.lower():
            return None

        schema, object_name = parts[-2], parts[-1]
        return self._by_key.get((schema.lower(), object_name.lower()))

    def contains(self, name: str) -> bool:
        return self.find(name) is not None

    def object_names(self) -> List[str]:
        return [obj.full_name for obj in self.all_objects()]

    def to_prompt_text(self) -> str:
        """Compact schema description for LLM prompts."""
        if not len(self):
            return "No tables found in database."

        lines = [f"DATABASE SCHEMA ({len(self.tables)} tables, {len(self.views)} views):", ""]

        for obj in self.all_objects():
            lines.append(f"- {obj.kind.upper()} {obj.full_name}:")
            for col in obj.columns:
                flags = []
                if col.primary_key:
                    flags.append("PK")
                if not col.nullable:
                    flags.append("NOT NULL")
                suffix = f" ({', '.join(flags)})" if flags else ""
                lines.append(f"    {col.name}: {col.data_type}{suffix}")
            for fk in getattr(obj, "foreign_keys", ()):
                lines.append(
                    f"    FK {fk.column} -> {fk.referenced_table}.{fk.referenced_column}"
                )
            lines.append("")

        return "\n".join(lines)

    def summary(self) -> dict:
        """Schema summary for API responses."""
        return {
            "database_name": self.database_name,
            "loaded_at": self.loaded_at.isoformat(),
            "table_count": len(self.tables),
            "view_count": len(self.views),
            "objects": [
                {
                    "name": obj.full_name,
                    "kind": obj.kind,
                    "column_count": len(obj.columns),
                    "columns": [
                        {
                            "name": col.name,
                            "type": col.data_type,
                            "nullable": col.nullable,
                            "primary_key": col.primary_key,
                            "max_length": col.max_length,
                        }
                        for col in obj.columns
                    ],
                }
                for obj in self.all_objects()
            ],
        }
