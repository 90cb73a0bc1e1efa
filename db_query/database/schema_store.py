"""
Schema Store - persisted cache of schema snapshots, keyed by connection name.

Two implementations:
- InMemorySchemaStore: process-local dictionary
- SQLiteSchemaStore: local SQLite file, one row per table/view
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .schema_introspector import SchemaSnapshot, TableInfo, ViewInfo

logger = logging.getLogger(__name__)


class SchemaStore(ABC):
    """Abstract base class for schema snapshot stores."""

    @abstractmethod
    async def get(self, name: str) -> Optional[SchemaSnapshot]:
        pass

    @abstractmethod
    async def save(self, name: str, snapshot: SchemaSnapshot):
        pass

    @abstractmethod
    async def delete(self, name: str):
        pass

    async def close(self):
        """Release any resources held by the store."""


class InMemorySchemaStore(SchemaStore):
    """Keeps snapshots in a dictionary for the life of the process."""

    def __init__(self):
        self._snapshots: Dict[str, SchemaSnapshot] = {}

    async def get(self, name: str) -> Optional[SchemaSnapshot]:
        return self._snapshots.get(name)

    async def save(self, name: str, snapshot: SchemaSnapshot):
        self._snapshots[name] = snapshot

    async def delete(self, name: str):
        self._snapshots.pop(name, None)


SCHEMA_METADATA_DDL = """
CREATE TABLE IF NOT EXISTS schema_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    db_name TEXT NOT NULL,
    table_name TEXT NOT NULL,
    table_type TEXT NOT NULL,
    metadata_json TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(db_name, table_name, table_type)
)
"""

SCHEMA_METADATA_INDEX_DDL = """
CREATE INDEX IF NOT EXISTS idx_schema_metadata_db_name ON schema_metadata(db_name)
"""

# One marker row per snapshot, so an empty database still reads back as cached
SNAPSHOT_MARKER = "snapshot"


class SQLiteSchemaStore(SchemaStore):
    """
    Persists snapshots in a local SQLite database.

    Each table or view is one row with its columns, primary key and row
    count serialized as JSON.
    """

    def __init__(self, path: str):
        self.path = path
        self._engine: Optional[AsyncEngine] = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the SQLAlchemy engine."""
        if self._engine is None:
            self._engine = create_async_engine(f"sqlite+aiosqlite:///{self.path}", echo=False)
        return self._engine

    async def _ensure_tables(self):
        """Create the metadata table if it doesn't exist."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            async with self.engine.begin() as conn:
                await conn.execute(text(SCHEMA_METADATA_DDL))
                await conn.execute(text(SCHEMA_METADATA_INDEX_DDL))
            self._initialized = True
            logger.info(f"Schema cache ready at {self.path}")

    async def get(self, name: str) -> Optional[SchemaSnapshot]:
        await self._ensure_tables()
        async with self.engine.connect() as conn:
            result = await conn.execute(
                text("""
                    SELECT table_name, table_type, metadata_json, updated_at
                    FROM schema_metadata
                    WHERE db_name = :db_name
                    ORDER BY id
                """),
                {"db_name": name},
            )
            rows = result.mappings().all()

        marker = next((row for row in rows if row["table_type"] == SNAPSHOT_MARKER), None)
        if marker is None:
            return None

        snapshot = SchemaSnapshot(
            db_name=name,
            updated_at=datetime.fromisoformat(marker["updated_at"]),
        )
        for row in rows:
            metadata = json.loads(row["metadata_json"])
            metadata["name"] = row["table_name"]
            if row["table_type"] == "table":
                snapshot.tables.append(TableInfo.from_dict(metadata))
            elif row["table_type"] == "view":
                snapshot.views.append(ViewInfo.from_dict(metadata))
        return snapshot

    async def save(self, name: str, snapshot: SchemaSnapshot):
        await self._ensure_tables()
        updated_at = snapshot.updated_at.isoformat()

        records = [{
            "table_name": "",
            "table_type": SNAPSHOT_MARKER,
            "metadata_json": "{}",
        }]
        for table in snapshot.tables:
            metadata = table.to_dict()
            metadata.pop("name")
            records.append({
                "table_name": table.name,
                "table_type": "table",
                "metadata_json": json.dumps(metadata),
            })
        for view in snapshot.views:
            metadata = view.to_dict()
            metadata.pop("name")
            records.append({
                "table_name": view.name,
                "table_type": "view",
                "metadata_json": json.dumps(metadata),
            })

        for record in records:
            record["db_name"] = name
            record["updated_at"] = updated_at

        async with self.engine.begin() as conn:
            await conn.execute(
                text("DELETE FROM schema_metadata WHERE db_name = :db_name"),
                {"db_name": name},
            )
            await conn.execute(
                text("""
                    INSERT INTO schema_metadata
                    (db_name, table_name, table_type, metadata_json, updated_at)
                    VALUES (:db_name, :table_name, :table_type, :metadata_json, :updated_at)
                """),
                records,
            )
        logger.debug(f"Cached schema for '{name}' ({len(records) - 1} relations)")

    async def delete(self, name: str):
        await self._ensure_tables()
        async with self.engine.begin() as conn:
            await conn.execute(
                text("DELETE FROM schema_metadata WHERE db_name = :db_name"),
                {"db_name": name},
            )

    async def close(self):
        """Dispose the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._initialized = False
