"""
Read-only, bounded SQL query engine for externally owned databases.

Validates user or LLM-generated SQL, runs it through per-connection pools
and returns JSON-safe results; keeps a cached view of each database's schema.
"""

from .config import AppConfig, configure_logging
from .errors import (
    QueryEngineError,
    SQLValidationError,
    SQLSyntaxError,
    NotReadOnlyError,
    DatabaseConnectionError,
    ExecutionTimeoutError,
    ExecutionError,
    GenerationError,
    NotFoundError
)
from .service import QueryService, StaticConnectionRegistry

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "configure_logging",
    "QueryEngineError",
    "SQLValidationError",
    "SQLSyntaxError",
    "NotReadOnlyError",
    "DatabaseConnectionError",
    "ExecutionTimeoutError",
    "ExecutionError",
    "GenerationError",
    "NotFoundError",
    "QueryService",
    "StaticConnectionRegistry"
]
