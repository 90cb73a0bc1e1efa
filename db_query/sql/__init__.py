"""SQL module exports."""

from .validator import SQLValidator, ValidatedStatement, get_sqlglot_dialect
from .generator import SQLGenerator, extract_sql, format_schema_context

__all__ = [
    "SQLValidator", "ValidatedStatement", "get_sqlglot_dialect",
    "SQLGenerator", "extract_sql", "format_schema_context"
]
