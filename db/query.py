"""
db/query.py
-----------
Single-statement execution through the pool.

Every statement is sent with bound parameters (``%s`` placeholders);
values are never formatted into the SQL text.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection

from db.connection import ConnectionPool
from db.errors import QueryError
from utils.logger import get_logger

logger = get_logger(__name__)

Params = Optional[Sequence[Any] | dict]


@dataclass
class RowSet:
    """
    Tabular result of a statement.

    Attributes:
        columns: Column names, empty for statements that return no rows.
        rows: Row tuples in server order.
        rowcount: Rows affected/returned as reported by the driver.
    """
    columns: list[str] = field(default_factory=list)
    rows: list[tuple] = field(default_factory=list)
    rowcount: int = -1

    def __iter__(self) -> Iterator[tuple]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def first(self) -> Optional[tuple]:
        """The first row, or None."""
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """The first column of the first row, or None."""
        row = self.first()
        return row[0] if row else None

    def as_dicts(self) -> list[dict]:
        return [dict(zip(self.columns, row)) for row in self.rows]


def describe(statement: str, limit: int = 80) -> str:
    """One-line, truncated form of a statement for log messages."""
    flat = " ".join(statement.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def run_statement(conn: PgConnection, statement: str, params: Params = None) -> RowSet:
    """
    Execute one statement on an already checked-out connection.
    Does not commit or roll back.

    Raises:
        QueryError: Wrapping the psycopg2 error, with duration attached.
            Parameters that do not fit the placeholders (TypeError or
            IndexError from client-side binding) are wrapped the same way.
    """
    start = time.perf_counter()
    try:
        with conn.cursor() as cur:
            cur.execute(statement, params)
            if cur.description is None:
                columns, rows = [], []
            else:
                columns = [col[0] for col in cur.description]
                rows = cur.fetchall()
            rowcount = cur.rowcount
    except (psycopg2.Error, TypeError, IndexError) as e:
        duration = _elapsed_ms(start)
        logger.error(f"❌ Query error after {duration:.1f}ms [{describe(statement)}]: {e}")
        raise QueryError(
            f"Query failed: {str(e).strip()}", statement, params, duration
        ) from e

    logger.debug(f"📝 Query executed in {_elapsed_ms(start):.1f}ms [{describe(statement)}]")
    return RowSet(columns, rows, rowcount)


def execute(pool: ConnectionPool, statement: str, params: Params = None) -> RowSet:
    """
    Run one statement in its own transaction.

    Args:
        pool: The process connection pool.
        statement: SQL with ``%s`` placeholders.
        params: Values bound to the placeholders.

    Returns:
        The resulting RowSet (committed).

    Raises:
        QueryError: The statement or its commit failed; the connection
            has been rolled back and returned to the pool.
        PoolExhaustedError: No connection became available in time.
    """
    with pool.connection() as conn:
        try:
            result = run_statement(conn, statement, params)
            commit(conn, statement)
            return result
        except QueryError:
            rollback_quietly(conn)
            raise


def commit(conn: PgConnection, statement: str = "COMMIT") -> None:
    """Commit, converting driver errors into QueryError."""
    try:
        conn.commit()
    except psycopg2.Error as e:
        raise QueryError(f"Commit failed: {str(e).strip()}", statement) from e


def rollback_quietly(conn: PgConnection) -> None:
    """Roll back after an error that is already being raised."""
    if conn.closed:
        return
    try:
        conn.rollback()
    except psycopg2.Error as e:
        logger.warning(f"Rollback after failed query also failed: {e}")
