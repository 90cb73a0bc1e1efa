"""
Error taxonomy for the query engine.

Every error raised across a module boundary is a QueryEngineError subclass
with a stable code, so callers can render a payload of the form
{"error": ..., "code": ..., "details": {...}} without inspecting types.
"""

from typing import Any, Dict, Optional


class QueryEngineError(Exception):
    """Base class for all classified query engine errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def with_details(self, **details: Any) -> "QueryEngineError":
        """Attach extra details and return self, for re-raising."""
        self.details.update(details)
        return self

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class SQLValidationError(QueryEngineError):
    """Raised when SQL validation fails."""

    code = "VALIDATION_ERROR"


class SQLSyntaxError(SQLValidationError):
    """The SQL text could not be parsed."""

    code = "SYNTAX_ERROR"

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        details = {}
        if line is not None:
            details["line"] = line
        if column is not None:
            details["column"] = column
        super().__init__(message, details)
        self.line = line
        self.column = column


class NotReadOnlyError(SQLValidationError):
    """The statement is not a single read-only query."""

    code = "NOT_READ_ONLY"

    def __init__(self, statement_type: str, message: Optional[str] = None):
        super().__init__(
            message or f"Only SELECT statements are allowed, got: {statement_type}",
            {"statementType": statement_type},
        )
        self.statement_type = statement_type


class DatabaseConnectionError(QueryEngineError):
    """Could not establish a connection to the target database."""

    code = "CONNECTION_ERROR"


class ExecutionTimeoutError(QueryEngineError):
    code = "EXECUTION_TIMEOUT"


class ExecutionError(QueryEngineError):
    """The database rejected the statement at runtime."""

    code = "EXECUTION_ERROR"


class GenerationError(QueryEngineError):
    """The language model was unreachable or returned no usable SQL."""

    code = "GENERATION_ERROR"


class NotFoundError(QueryEngineError):
    code = "NOT_FOUND"
