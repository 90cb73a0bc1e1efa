"""
Dynamic Schema Introspection Module - Multi-Database Support.

It dynamically discovers, for the default schema of the target database:
- All tables and views
- All columns with their declared types, nullability and defaults
- Primary keys
- Approximate row counts (best effort)

Supports PostgreSQL, MySQL, and SQLite.
NEVER hardcodes any table or column names.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ..errors import DatabaseConnectionError, ExecutionError
from .locks import NamedLocks

logger = logging.getLogger(__name__)


@dataclass
class ColumnInfo:
    """Information about a single database column."""
    name: str
    data_type: str
    nullable: bool = True
    default_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "dataType": self.data_type,
            "nullable": self.nullable,
        }
        if self.default_value is not None:
            data["defaultValue"] = self.default_value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnInfo":
        return cls(
            name=data["name"],
            data_type=data["dataType"],
            nullable=data.get("nullable", True),
            default_value=data.get("defaultValue"),
        )


@dataclass
class TableInfo:
    """Complete information about a database table."""
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)
    primary_key: Optional[List[str]] = None
    row_count: Optional[int] = None

    def __post_init__(self):
        # Primary key names must be columns of this table
        if self.primary_key:
            names = set(self.column_names)
            self.primary_key = [pk for pk in self.primary_key if pk in names] or None

    @property
    def column_names(self) -> List[str]:
        """Get list of all column names."""
        return [col.name for col in self.columns]

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        """Get column info by name."""
        for col in self.columns:
            if col.name.lower() == name.lower():
                return col
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "columns": [col.to_dict() for col in self.columns],
        }
        if self.primary_key:
            data["primaryKey"] = list(self.primary_key)
        if self.row_count is not None:
            data["rowCount"] = self.row_count
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TableInfo":
        return cls(
            name=data["name"],
            columns=[ColumnInfo.from_dict(c) for c in data.get("columns", [])],
            primary_key=data.get("primaryKey"),
            row_count=data.get("rowCount"),
        )


@dataclass
class ViewInfo:
    name: str
    columns: List[ColumnInfo] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [col.name for col in self.columns]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "columns": [col.to_dict() for col in self.columns]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ViewInfo":
        return cls(
            name=data["name"],
            columns=[ColumnInfo.from_dict(c) for c in data.get("columns", [])],
        )


@dataclass
class SchemaSnapshot:
    """Point-in-time description of a connection's tables and views."""
    db_name: str
    tables: List[TableInfo] = field(default_factory=list)
    views: List[ViewInfo] = field(default_factory=list)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def table_names(self) -> List[str]:
        """Get list of all table names."""
        return [t.name for t in self.tables]

    @property
    def view_names(self) -> List[str]:
        return [v.name for v in self.views]

    def get_table(self, name: str) -> Optional[TableInfo]:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dbName": self.db_name,
            "tables": [t.to_dict() for t in self.tables],
            "views": [v.to_dict() for v in self.views],
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaSnapshot":
        return cls(
            db_name=data["dbName"],
            tables=[TableInfo.from_dict(t) for t in data.get("tables", [])],
            views=[ViewInfo.from_dict(v) for v in data.get("views", [])],
            updated_at=datetime.fromisoformat(data["updatedAt"]),
        )


def _quote_identifier(name: str, backend: str) -> str:
    if backend == "mysql":
        return "`" + name.replace("`", "``") + "`"
    return '"' + name.replace('"', '""') + '"'


async def _fetch_dicts(conn: AsyncConnection, query: str, params: Optional[dict] = None) -> List[dict]:
    result = await conn.execute(text(query), params or {})
    return [dict(row) for row in result.mappings()]


class SchemaIntrospector:
    """
    Dynamically introspects database schema and caches the result.

    It queries database system catalogs to discover the complete schema.
    Supports PostgreSQL, MySQL, and SQLite.
    """

    # SQLite internal tables
    SYSTEM_TABLE_PREFIXES = ("sqlite_",)

    def __init__(self, store, include_row_counts: bool = True):
        """
        Initialize the introspector.

        Args:
            store: Schema store holding persisted snapshots, keyed by connection name.
            include_row_counts: Whether to collect per-table row-count estimates.
        """
        self.store = store
        self.include_row_counts = include_row_counts
        self._locks = NamedLocks()

    async def fetch(self, name: str, engine: AsyncEngine, force_refresh: bool = False) -> SchemaSnapshot:
        """
        Return the cached snapshot for a connection, introspecting on a miss.

        Args:
            name: Connection name the snapshot is keyed by
            engine: Pooled engine for the target database
            force_refresh: If True, bypass cache and re-introspect

        Returns:
            SchemaSnapshot with complete schema details
        """
        if not force_refresh:
            cached = await self.store.get(name)
            if cached is not None:
                return cached

        async with self._locks.hold(name):
            if not force_refresh:
                cached = await self.store.get(name)
                if cached is not None:
                    return cached

            snapshot = await self.introspect(name, engine)
            await self.store.save(name, snapshot)
            return snapshot

    async def invalidate(self, name: str):
        """
        Drop the cached snapshot for a connection.

        Waits for an in-flight introspection of the same name, so its result
        cannot be saved back after the drop.
        """
        async with self._locks.hold(name):
            await self.store.delete(name)

    async def introspect(self, name: str, engine: AsyncEngine) -> SchemaSnapshot:
        """
        Perform complete schema introspection, without touching the cache.
        """
        backend = engine.dialect.name
        logger.info(f"Starting schema introspection for '{name}' ({backend})...")

        try:
            async with engine.connect() as conn:
                tables = []
                for table_name in await self._get_relations(conn, backend, "table"):
                    columns = await self._get_columns(conn, backend, table_name)
                    primary_key = await self._get_primary_key(conn, backend, table_name)
                    tables.append(TableInfo(
                        name=table_name,
                        columns=columns,
                        primary_key=primary_key or None,
                    ))

                views = []
                for view_name in await self._get_relations(conn, backend, "view"):
                    columns = await self._get_columns(conn, backend, view_name)
                    views.append(ViewInfo(name=view_name, columns=columns))
        except DBAPIError as e:
            if e.connection_invalidated:
                raise DatabaseConnectionError(f"Database connection lost during introspection: {e.orig}") from e
            logger.error(f"Schema introspection failed for '{name}': {e.orig}")
            raise ExecutionError(str(e.orig)) from e
        except SQLAlchemyError as e:
            logger.error(f"Schema introspection failed for '{name}': {e}")
            raise ExecutionError(str(e)) from e
        except OSError as e:
            logger.error(f"Database connection failed for '{name}': {e}")
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e

        # Counted on separate connections so one failure cannot abort the rest
        if self.include_row_counts:
            for table in tables:
                table.row_count = await self._get_row_count(engine, backend, table.name)

        snapshot = SchemaSnapshot(db_name=name, tables=tables, views=views)
        logger.info(
            f"Schema introspection complete for '{name}'. "
            f"Found {len(tables)} tables and {len(views)} views."
        )
        return snapshot

    async def _get_relations(self, conn: AsyncConnection, backend: str, kind: str) -> List[str]:
        """
        Get all user tables (kind='table') or views (kind='view').
        """
        if backend == "sqlite":
            query = """
                SELECT name AS relation_name
                FROM sqlite_master
                WHERE type = :kind
                ORDER BY name
            """
            rows = await _fetch_dicts(conn, query, {"kind": kind})
            return [
                row["relation_name"] for row in rows
                if not row["relation_name"].startswith(self.SYSTEM_TABLE_PREFIXES)
            ]

        elif backend == "postgresql":
            if kind == "view":
                query = """
                    SELECT table_name AS relation_name
                    FROM information_schema.views
                    WHERE table_schema = 'public'
                    ORDER BY table_name
                """
            else:
                query = """
                    SELECT table_name AS relation_name
                    FROM information_schema.tables
                    WHERE table_schema = 'public'
                    AND table_type = 'BASE TABLE'
                    ORDER BY table_name
                """
            rows = await _fetch_dicts(conn, query)
            return [row["relation_name"] for row in rows]

        else:  # MySQL
            query = """
                SELECT TABLE_NAME AS relation_name
                FROM INFORMATION_SCHEMA.TABLES
                WHERE TABLE_SCHEMA = DATABASE()
                AND TABLE_TYPE = :table_type
                ORDER BY TABLE_NAME
            """
            table_type = "VIEW" if kind == "view" else "BASE TABLE"
            rows = await _fetch_dicts(conn, query, {"table_type": table_type})
            return [row["relation_name"] for row in rows]

    async def _get_columns(self, conn: AsyncConnection, backend: str, relation: str) -> List[ColumnInfo]:
        """Get all columns for a table or view, in declaration order."""
        if backend == "sqlite":
            query = f"PRAGMA table_info({_quote_identifier(relation, backend)})"
            rows = await _fetch_dicts(conn, query)
            return [
                ColumnInfo(
                    name=row["name"],
                    data_type=row["type"] or "TEXT",  # SQLite columns can have no type
                    nullable=row["notnull"] == 0 and row["pk"] == 0,
                    default_value=None if row["dflt_value"] is None else str(row["dflt_value"]),
                )
                for row in rows
            ]

        elif backend == "postgresql":
            query = """
                SELECT
                    column_name,
                    data_type,
                    is_nullable,
                    column_default
                FROM information_schema.columns
                WHERE table_schema = 'public'
                AND table_name = :relation
                ORDER BY ordinal_position
            """
        else:  # MySQL
            query = """
                SELECT
                    COLUMN_NAME AS column_name,
                    COLUMN_TYPE AS data_type,
                    IS_NULLABLE AS is_nullable,
                    COLUMN_DEFAULT AS column_default
                FROM INFORMATION_SCHEMA.COLUMNS
                WHERE TABLE_SCHEMA = DATABASE()
                AND TABLE_NAME = :relation
                ORDER BY ORDINAL_POSITION
            """

        rows = await _fetch_dicts(conn, query, {"relation": relation})
        return [
            ColumnInfo(
                name=row["column_name"],
                data_type=str(row["data_type"]),
                nullable=row["is_nullable"] == "YES",
                default_value=None if row["column_default"] is None else str(row["column_default"]),
            )
            for row in rows
        ]

    async def _get_primary_key(self, conn: AsyncConnection, backend: str, table_name: str) -> List[str]:
        """Get primary key columns for a table, in key order."""
        if backend == "sqlite":
            query = f"PRAGMA table_info({_quote_identifier(table_name, backend)})"
            rows = await _fetch_dicts(conn, query)
            keyed = sorted((row["pk"], row["name"]) for row in rows if row["pk"] > 0)
            return [name for _, name in keyed]

        elif backend == "postgresql":
            query = """
                SELECT kcu.column_name
                FROM information_schema.table_constraints tc
                JOIN information_schema.key_column_usage kcu
                    ON tc.constraint_name = kcu.constraint_name
                    AND tc.table_schema = kcu.table_schema
                    AND tc.table_name = kcu.table_name
                WHERE tc.table_schema = 'public'
                AND tc.table_name = :table_name
                AND tc.constraint_type = 'PRIMARY KEY'
                ORDER BY kcu.ordinal_position
            """
        else:  # MySQL
            query = """
                SELECT COLUMN_NAME AS column_name
                FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE
                WHERE TABLE_SCHEMA = DATABASE()
                AND TABLE_NAME = :table_name
                AND CONSTRAINT_NAME = 'PRIMARY'
                ORDER BY ORDINAL_POSITION
            """

        rows = await _fetch_dicts(conn, query, {"table_name": table_name})
        return [row["column_name"] for row in rows]

    async def _get_row_count(self, engine: AsyncEngine, backend: str, table_name: str) -> Optional[int]:
        """
        Get approximate row count for a table.
        Uses different strategies per database; None when it cannot be read.
        """
        if backend == "sqlite":
            query = f"SELECT COUNT(*) AS row_count FROM {_quote_identifier(table_name, backend)}"
            params = {}
        elif backend == "postgresql":
            # Use pg_stat_user_tables for fast estimation
            query = """
                SELECT n_live_tup AS row_count
                FROM pg_stat_user_tables
                WHERE schemaname = 'public'
                AND relname = :table_name
            """
            params = {"table_name": table_name}
        else:  # MySQL
            query = """
                SELECT TABLE_ROWS AS row_count
                FROM INFORMATION_SCHEMA.TABLES
                WHERE TABLE_SCHEMA = DATABASE()
                AND TABLE_NAME = :table_name
            """
            params = {"table_name": table_name}

        try:
            async with engine.connect() as conn:
                rows = await _fetch_dicts(conn, query, params)
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Error getting row count for {table_name}: {e}")
            return None

        if not rows or rows[0]["row_count"] is None:
            return None
        return int(rows[0]["row_count"])
