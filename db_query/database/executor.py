"""
Query Executor - runs validated SQL and shapes the result for JSON.

Every cell returned by the database is converted into one of a closed set
of JSON-safe shapes (see CellValue). Integers outside the range a JSON
number can carry exactly (+/- 2**53 - 1) are returned as decimal strings.
"""

import asyncio
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ..errors import DatabaseConnectionError, ExecutionError, ExecutionTimeoutError

logger = logging.getLogger(__name__)

MAX_SAFE_INTEGER = 2 ** 53 - 1

# null | boolean | number | string | array | object
CellValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]


def _int_cell(value: int) -> Union[int, str]:
    if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
        return value
    return str(value)


def _non_finite(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    return "Infinity" if value > 0 else "-Infinity"


def _decimal_cell(value: Decimal) -> Union[int, float, str]:
    if not value.is_finite():
        return str(value)
    if value == value.to_integral_value():
        return _int_cell(int(value))
    as_float = float(value)
    try:
        if Decimal(repr(as_float)) == value:
            return as_float
    except InvalidOperation:
        pass
    return str(value)


def _duration_cell(value: timedelta) -> str:
    """ISO-8601 duration, e.g. P1DT2H3M4.5S."""
    total = value.total_seconds()
    sign = "-" if total < 0 else ""
    total = abs(total)
    days, remainder = divmod(total, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    date_part = f"{int(days)}D" if days else ""
    time_part = ""
    if hours:
        time_part += f"{int(hours)}H"
    if minutes:
        time_part += f"{int(minutes)}M"
    if seconds or not (date_part or time_part):
        time_part += f"{seconds:.6f}".rstrip("0").rstrip(".") + "S"
    return f"{sign}P{date_part}" + (f"T{time_part}" if time_part else "")


def to_cell_value(value: Any) -> CellValue:
    """Convert a raw driver value into a JSON-safe cell."""
    if value is None:
        return None
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return _int_cell(value)
    if isinstance(value, float):
        return value if math.isfinite(value) else _non_finite(value)
    if isinstance(value, Decimal):
        return _decimal_cell(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return _duration_cell(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): to_cell_value(v) for k, v in value.items()}
    # Composite records (e.g. asyncpg.Record) expose items() without being Mappings
    if callable(getattr(value, "items", None)):
        try:
            return {str(k): to_cell_value(v) for k, v in value.items()}
        except (TypeError, ValueError):
            return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_cell_value(v) for v in value]
    return str(value)


@dataclass
class ResultSet:
    """Tabular query result with JSON-safe cells."""
    columns: List[str]
    rows: List[List[CellValue]] = field(default_factory=list)
    execution_time_ms: int = 0

    def __post_init__(self):
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"Row {index} has {len(row)} values, expected {width}"
                )

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [list(row) for row in self.rows],
            "rowCount": self.row_count,
            "executionTimeMs": self.execution_time_ms,
        }


class QueryExecutor:
    """
    Runs validated, read-only SQL against a pooled engine.

    The statement runs inside a transaction that is always rolled back; on
    PostgreSQL the transaction is also declared READ ONLY.
    """

    def __init__(self, execution_timeout: float = 30.0, connect_timeout: float = 10.0):
        self.execution_timeout = execution_timeout
        self.connect_timeout = connect_timeout

    async def execute(self, engine: AsyncEngine, sql: str) -> ResultSet:
        """
        Execute a validated SQL query and return results.

        Args:
            engine: Pooled engine for the target database
            sql: Output of the SQL validator; executed as-is

        Returns:
            ResultSet with columns, rows and elapsed milliseconds

        Raises:
            DatabaseConnectionError: no connection could be checked out in time
            ExecutionTimeoutError: the statement exceeded the execution timeout
            ExecutionError: the database rejected the statement
        """
        conn = await self._connect(engine)
        start = time.perf_counter()
        try:
            columns, rows = await asyncio.wait_for(
                self._run(conn, sql), timeout=self.execution_timeout
            )
        except asyncio.TimeoutError as e:
            # Drop only this connection; the pool stays usable
            await conn.invalidate()
            logger.warning(f"Query timed out after {self.execution_timeout}s")
            raise ExecutionTimeoutError(
                f"Query timed out after {self.execution_timeout} seconds"
            ) from e
        except DBAPIError as e:
            logger.error(f"Database execution error ({type(e.orig).__name__}): {e.orig}")
            raise ExecutionError(str(e.orig)) from e
        except SQLAlchemyError as e:
            logger.error(f"SQLAlchemy error ({type(e).__name__}): {e}")
            raise ExecutionError(str(e)) from e
        finally:
            await conn.close()

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.debug(f"Query returned {len(rows)} rows in {elapsed_ms}ms")
        return ResultSet(columns=columns, rows=rows, execution_time_ms=elapsed_ms)

    async def _connect(self, engine: AsyncEngine) -> AsyncConnection:
        conn = engine.connect()
        try:
            await asyncio.wait_for(conn.start(), timeout=self.connect_timeout)
        except asyncio.TimeoutError as e:
            raise DatabaseConnectionError(
                f"Could not get a database connection within {self.connect_timeout}s"
            ) from e
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database connection failed: {e}")
            raise DatabaseConnectionError(f"Database connection failed: {e}") from e
        return conn

    @staticmethod
    async def _run(conn: AsyncConnection, sql: str):
        if conn.dialect.name == "postgresql":
            await conn.execute(text("SET TRANSACTION READ ONLY"))

        # Sent as-is: no bind-parameter parsing of ':name' or '%' in literals
        result = await conn.exec_driver_sql(sql, execution_options={"no_parameters": True})
        columns = list(result.keys())
        rows = [[to_cell_value(value) for value in row] for row in result.fetchall()]
        return columns, rows
