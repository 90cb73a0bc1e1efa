"""
SQL Validator - Security layer for SQL queries.

Ensures ONLY single, read-only SELECT queries are executed and that every
accepted query is bounded by a LIMIT. Works on the sqlglot syntax tree of
the statement rather than on keyword matching, so string literals and
comments cannot trip or bypass the checks.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from ..errors import NotReadOnlyError, SQLSyntaxError, SQLValidationError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000

# SQLAlchemy backend name -> sqlglot dialect name
_SQLGLOT_DIALECTS = {
    "postgresql": "postgres",
    "postgres": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "sqlite": "sqlite",
}

# Query roots that can be executed
_READ_ONLY_ROOTS = (exp.Select, exp.Union, exp.Intersect, exp.Except)

# Nodes that mutate data or schema wherever they appear in the tree
_MUTATING_NODES = (
    exp.Insert,
    exp.Update,
    exp.Delete,
    exp.Merge,
    exp.Create,
    exp.Drop,
    exp.Alter,
    exp.TruncateTable,
    exp.Command,
)

_STATEMENT_NAMES = {
    "TruncateTable": "TRUNCATE",
    "Union": "SELECT",
    "Intersect": "SELECT",
    "Except": "SELECT",
}


def get_sqlglot_dialect(backend: str) -> str:
    """Map a SQLAlchemy backend name (e.g. 'postgresql') to a sqlglot dialect."""
    return _SQLGLOT_DIALECTS.get(backend.lower(), backend.lower())


def statement_type(expression: exp.Expression) -> str:
    """Human-readable statement keyword for a parsed statement."""
    if isinstance(expression, exp.Command):
        return str(expression.this).upper()
    name = type(expression).__name__
    return _STATEMENT_NAMES.get(name, name.upper())


def _has_limit(expression: exp.Expression) -> bool:
    return bool(expression.args.get("limit") or expression.args.get("fetch"))


@dataclass
class ValidatedStatement:
    """
    Outcome of gatekeeping a single SQL text.

    Either `sql` holds the execution-ready statement, or `error` holds the
    classified rejection.
    """
    original_sql: str
    sql: Optional[str] = None
    statement_type: Optional[str] = None
    error: Optional[SQLValidationError] = None
    limit_applied: bool = False

    @property
    def is_valid(self) -> bool:
        return self.error is None

    def unwrap(self) -> str:
        """Return the executable SQL, raising the rejection if there is one."""
        if self.error is not None:
            raise self.error
        return self.sql


class SQLValidator:
    """Validates SQL queries for safety before execution."""

    def __init__(self, dialect: str = "postgres", default_limit: int = DEFAULT_LIMIT):
        self.dialect = get_sqlglot_dialect(dialect)
        self.default_limit = default_limit

    def validate(self, sql: str) -> ValidatedStatement:
        """
        Validate SQL query for safety.

        Never raises for bad input; the rejection is carried on the result.
        """
        try:
            return self._validate(sql)
        except SQLValidationError as e:
            logger.info(f"SQL rejected ({e.code}): {e.message}")
            return ValidatedStatement(
                original_sql=sql,
                statement_type=getattr(e, "statement_type", None),
                error=e,
            )

    def _validate(self, sql: str) -> ValidatedStatement:
        if not sql or not sql.strip():
            raise SQLSyntaxError("Empty SQL query")

        sql = sql.strip()

        try:
            parsed = sqlglot.parse(sql, read=self.dialect)
        except ParseError as e:
            raise self._syntax_error(e) from e
        except TokenError as e:
            raise SQLSyntaxError(f"Invalid SQL syntax: {e}") from e

        # Stray semicolons produce empty entries
        statements = [s for s in parsed if s is not None]

        if not statements:
            raise SQLSyntaxError("Empty SQL query")

        # Only allow single statements
        if len(statements) > 1:
            raise NotReadOnlyError(
                "MULTIPLE",
                "Multiple statements not allowed. Please provide a single SELECT statement.",
            )

        statement = statements[0]
        query = statement.unnest() if isinstance(statement, exp.Subquery) else statement

        if not isinstance(query, _READ_ONLY_ROOTS):
            raise NotReadOnlyError(statement_type(query))

        # Data-modifying CTEs and the like
        mutating = query.find(*_MUTATING_NODES)
        if mutating is not None:
            raise NotReadOnlyError(
                statement_type(mutating),
                f"Data-modifying statement not allowed inside a query: {statement_type(mutating)}",
            )

        # SELECT ... INTO creates a table
        if query.find(exp.Into) is not None:
            raise NotReadOnlyError("SELECT INTO", "SELECT ... INTO is not allowed")

        if _has_limit(statement) or _has_limit(query):
            # Explicit user limit is kept as written
            return ValidatedStatement(
                original_sql=sql, sql=sql.rstrip(";").rstrip(), statement_type="SELECT"
            )

        bounded = query.copy()
        bounded.set("limit", exp.Limit(expression=exp.Literal.number(self.default_limit)))

        return ValidatedStatement(
            original_sql=sql,
            sql=bounded.sql(dialect=self.dialect),
            statement_type="SELECT",
            limit_applied=True,
        )

    @staticmethod
    def _syntax_error(error: ParseError) -> SQLSyntaxError:
        first = error.errors[0] if error.errors else {}
        description = first.get("description") or str(error)
        return SQLSyntaxError(
            f"Invalid SQL syntax: {description}",
            line=first.get("line"),
            column=first.get("col"),
        )
