"""
Text-to-SQL Generator - Multi-Database Support.

Uses an LLM to generate SQL queries from natural language, with the cached
schema as context. The generated text is NOT validated here: callers pass
it through the SQL validator exactly like user-typed SQL.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional

import sqlparse

from ..database.schema_introspector import ColumnInfo, SchemaSnapshot
from ..errors import GenerationError
from ..llm.client import LLMClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT_CHARS = 8000

_CODE_BLOCK = re.compile(
    r"```[ \t]*(?:sqlite|postgresql|postgres|mysql|sql)?[ \t]*\n?(.*?)```",
    re.DOTALL | re.IGNORECASE,
)

# A line that begins a SQL statement, read-only or not
_STATEMENT_START = re.compile(
    r"^[ \t]*(?:SELECT|WITH|INSERT|UPDATE|DELETE|MERGE|CREATE|DROP|ALTER|"
    r"TRUNCATE|EXPLAIN|VALUES|GRANT|REVOKE)\b",
    re.IGNORECASE | re.MULTILINE,
)

_BLANK_LINE = re.compile(r"\n[ \t]*\n")


def get_sql_dialect(db_type: str) -> str:
    """Get the SQL dialect name for the given database type."""
    dialects = {
        "postgres": "PostgreSQL",
        "postgresql": "PostgreSQL",
        "mysql": "MySQL",
        "sqlite": "SQLite"
    }
    return dialects.get(db_type, "SQL")


def get_dialect_specific_hints(db_type: str) -> str:
    """Get database-specific hints for SQL generation."""
    if db_type in ("postgres", "postgresql"):
        return """
PostgreSQL-SPECIFIC NOTES:
- Use ILIKE for case-insensitive pattern matching (instead of LIKE)
- String concatenation uses || operator
- Boolean values are TRUE/FALSE (not 1/0)
- Use double quotes for identifiers with special chars, single quotes for strings
"""
    elif db_type == "sqlite":
        return """
SQLite-SPECIFIC NOTES:
- LIKE is case-insensitive for ASCII characters by default
- Use || for string concatenation
- No ILIKE - use LIKE (case-insensitive) or GLOB (case-sensitive)
- Boolean values are 1/0
- Uses strftime() for date functions instead of DATE_FORMAT
"""
    else:  # MySQL
        return """
MySQL-SPECIFIC NOTES:
- IF YOU USE GROUP BY, every column in the SELECT list must be in the GROUP BY
  clause or wrapped in an aggregate function (ONLY_FULL_GROUP_BY).
- Use CONCAT() for string concatenation
- Boolean values are 1/0
- Use backticks for identifiers with special chars, single quotes for strings
"""


def _format_columns(columns: List[ColumnInfo]) -> str:
    return ", ".join(f"{c.name} ({c.data_type})" for c in columns)


def format_schema_context(schema: SchemaSnapshot, max_chars: int = DEFAULT_MAX_CONTEXT_CHARS) -> str:
    """
    Render a schema snapshot as a compact description for the LLM.

    Only names, types and primary keys are included; never row counts or
    data. Relations that would push the text past max_chars are left out
    and summarised in a trailing line.
    """
    header = f"Database: {schema.db_name}"
    entries = []
    for table in schema.tables:
        pk = f"PK: {', '.join(table.primary_key)}; " if table.primary_key else ""
        entries.append(("Tables:", f"  - {table.name} ({pk}columns: {_format_columns(table.columns)})"))
    for view in schema.views:
        entries.append(("Views:", f"  - {view.name} (columns: {_format_columns(view.columns)})"))

    lines = [header]
    used = len(header)
    section = None
    for index, (title, line) in enumerate(entries):
        addition = (["", title] if title != section else []) + [line]
        cost = sum(len(part) + 1 for part in addition)
        if used + cost > max_chars:
            lines.append(f"  ... {len(entries) - index} more relations omitted")
            break
        lines.extend(addition)
        used += cost
        section = title

    return "\n".join(lines) + "\n"


def extract_sql(response: str) -> Optional[str]:
    """
    Extract a single SQL statement from an LLM response.

    A fenced code block wins; otherwise the statement starts at the first
    line beginning with a SQL keyword and ends at the first semicolon or
    blank line. Returns None if nothing statement-like is found.
    """
    if not response or not response.strip():
        return None

    code_block = _CODE_BLOCK.search(response)
    if code_block:
        candidate = code_block.group(1)
    else:
        start = _STATEMENT_START.search(response)
        if start is None:
            return None
        candidate = _BLANK_LINE.split(response[start.start():], maxsplit=1)[0]

    statements = [s.strip() for s in sqlparse.split(candidate) if s.strip()]
    if not statements:
        return None

    sql = statements[0].rstrip(";").strip()
    return sql or None


class SQLGenerator:
    """Generates SQL queries from natural language using LLM."""

    SYSTEM_PROMPT_TEMPLATE = """You are a SQL expert. Convert natural language questions to {dialect} SELECT statements.

RULES:
1. ONLY generate SELECT statements (read-only queries).
2. NEVER use INSERT, UPDATE, DELETE, DROP, CREATE, ALTER, or TRUNCATE.
3. Use table and column names EXACTLY as shown in the schema.
4. Include WHERE clauses, JOINs, and aggregations as needed.
5. Do not add a LIMIT clause unless the question asks for a specific number of rows; the system bounds results automatically.
6. Return ONLY the SQL query, no explanations.
{dialect_hints}
DATABASE SCHEMA:
{schema}"""

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        dialect: str = "postgres",
        timeout: float = 60.0,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS
    ):
        self.llm_client = llm_client
        self.dialect = dialect
        self.timeout = timeout
        self.max_context_chars = max_context_chars

    def set_llm_client(self, llm_client: LLMClient):
        self.llm_client = llm_client

    def set_dialect(self, dialect: str):
        """Set the database dialect for SQL generation."""
        self.dialect = dialect

    def build_messages(self, prompt: str, schema: SchemaSnapshot, dialect: Optional[str] = None) -> List[Dict[str, str]]:
        """Pair the rendered schema with the user's question."""
        dialect = dialect or self.dialect
        system_prompt = self.SYSTEM_PROMPT_TEMPLATE.format(
            dialect=get_sql_dialect(dialect),
            dialect_hints=get_dialect_specific_hints(dialect),
            schema=format_schema_context(schema, self.max_context_chars)
        )
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt.strip()},
        ]

    async def generate(self, prompt: str, schema: SchemaSnapshot, dialect: Optional[str] = None) -> str:
        """
        Generate SQL from natural language.

        Returns:
            The extracted SQL statement, not yet validated

        Raises:
            GenerationError: the LLM failed, timed out, or returned no SQL
        """
        if not prompt or not prompt.strip():
            raise GenerationError("Prompt cannot be empty")
        if not self.llm_client:
            raise GenerationError("LLM client not configured")

        messages = self.build_messages(prompt, schema, dialect)

        try:
            response = await asyncio.wait_for(self.llm_client.chat(messages), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"LLM request timed out after {self.timeout}s")
            raise GenerationError(f"LLM request timed out after {self.timeout} seconds") from e
        except Exception as e:  # provider SDKs raise their own hierarchies
            logger.error(f"LLM request failed: {e}")
            raise GenerationError(f"LLM request failed: {e}") from e

        sql = extract_sql(response.content)
        if sql is None:
            logger.warning("LLM response contained no SQL statement")
            raise GenerationError(
                "LLM did not generate a valid SQL query",
                {"response": response.content[:500]},
            )

        logger.info(f"Generated SQL ({response.total_tokens} tokens): {sql}")
        return sql
