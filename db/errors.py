"""
db/errors.py
------------
Exception types raised by the database layer.
Callers catch these, never raw psycopg2 errors.
"""

from typing import Any, Optional, Sequence


class DatabaseError(Exception):
    """Base class for every error raised by the db package."""


class DatabaseConnectionError(DatabaseError):
    """The pool cannot reach the database."""


class PoolExhaustedError(DatabaseError):
    """No connection became available within the acquire timeout."""

    def __init__(self, timeout: float, max_connections: int):
        super().__init__(
            f"No database connection available after {timeout:.2f}s "
            f"(max_connections={max_connections})"
        )
        self.timeout = timeout
        self.max_connections = max_connections


class QueryError(DatabaseError):
    """
    A single statement failed.

    Attributes:
        statement: The SQL text that was sent.
        params: The bound parameters.
        duration_ms: Time spent before the failure, in milliseconds.
    """

    def __init__(
        self,
        message: str,
        statement: Optional[str] = None,
        params: Optional[Sequence[Any]] = None,
        duration_ms: Optional[float] = None,
    ):
        super().__init__(message)
        self.statement = statement
        self.params = params
        self.duration_ms = duration_ms


class RollbackError(QueryError):
    """
    ROLLBACK failed after the unit of work had already failed.

    Both errors are kept: `original` is what the work raised,
    `rollback_error` is what the ROLLBACK raised.
    """

    def __init__(self, original: BaseException, rollback_error: BaseException):
        super().__init__(
            f"Rollback failed ({rollback_error}) after error: {original!r}"
        )
        self.original = original
        self.rollback_error = rollback_error


class BootstrapError(DatabaseError):
    """Schema setup failed. Fatal at startup."""
