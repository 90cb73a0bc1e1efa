"""
Database module for the query engine.

Provides:
- Per-connection pool management
- Dynamic schema introspection and caching
- Safe query execution
"""

from .connection import (
    ConnectionHandle,
    ConnectionPoolCache,
    mask_url,
    validate_database_name,
    validate_database_url
)
from .executor import QueryExecutor, ResultSet, CellValue, to_cell_value
from .schema_introspector import (
    SchemaIntrospector,
    SchemaSnapshot,
    TableInfo,
    ViewInfo,
    ColumnInfo
)
from .schema_store import SchemaStore, InMemorySchemaStore, SQLiteSchemaStore

__all__ = [
    "ConnectionHandle",
    "ConnectionPoolCache",
    "mask_url",
    "validate_database_name",
    "validate_database_url",
    "QueryExecutor",
    "ResultSet",
    "CellValue",
    "to_cell_value",
    "SchemaIntrospector",
    "SchemaSnapshot",
    "TableInfo",
    "ViewInfo",
    "ColumnInfo",
    "SchemaStore",
    "InMemorySchemaStore",
    "SQLiteSchemaStore"
]
