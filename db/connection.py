"""
db/connection.py
----------------
Manages the PostgreSQL connection pool.
Wraps psycopg2's ThreadedConnectionPool with a bounded, waiting checkout,
an idle list with timeout-based eviction and connect/error notifications.

psycopg2 creates the physical connections (and the first `min_connections`
at open); released connections are kept in our own idle list, up to
`max_connections`, until they have been idle longer than `idle_timeout`.

The pool is an explicit object: the startup routine opens it and passes it
to every consumer, then closes it at shutdown.
"""

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

import psycopg2
from psycopg2 import extensions, pool
from psycopg2.extensions import connection as PgConnection

from config import DatabaseConfig
from db.errors import DatabaseConnectionError, PoolExhaustedError
from utils.logger import get_logger

logger = get_logger(__name__)

ConnectListener = Callable[[PgConnection], None]
ErrorListener = Callable[[BaseException], None]


class ConnectionPool:
    """
    A bounded pool of connections to one database.

    Usage:
        db = ConnectionPool(DatabaseConfig.from_env().validate()).open()
        with db.connection() as conn:
            ...
        db.close()
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        self._slots = threading.BoundedSemaphore(config.max_connections)
        self._lock = threading.Lock()
        self._known: set[int] = set()
        # (connection, idle since), oldest first
        self._idle: deque[tuple[PgConnection, float]] = deque()
        self._checked_out = 0
        self._connect_listeners: list[ConnectListener] = []
        self._error_listeners: list[ErrorListener] = []

    # ── Lifecycle ─────────────────────────────────────────

    def open(self) -> "ConnectionPool":
        """
        Create the pool and prove the database is reachable.

        Returns:
            self, so that construction and opening can be chained.

        Raises:
            DatabaseConnectionError: If no connection can be established
                within the connect timeout.
        """
        if self._pool is not None:
            return self
        try:
            self._pool = pool.ThreadedConnectionPool(
                self.config.min_connections,
                self.config.max_connections,
                **self.config.connect_kwargs(),
            )
        except psycopg2.OperationalError as e:
            self._emit_error(e)
            logger.error(f"Failed to initialize database pool: {e}")
            raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e

        try:
            self.release(self.acquire())
        except DatabaseConnectionError:
            self.close()
            raise

        logger.info(
            f"Database connection pool initialized "
            f"(max={self.config.max_connections}, tls={self.config.tls_policy.value})."
        )
        return self

    def close(self) -> None:
        """Close all connections, idle and checked out."""
        if self._pool is None:
            return
        if not self._pool.closed:
            self._pool.closeall()
        self._pool = None
        with self._lock:
            self._known.clear()
            self._idle.clear()
        logger.info("Database connection pool closed.")

    @property
    def closed(self) -> bool:
        return self._pool is None or self._pool.closed

    # ── Notifications ─────────────────────────────────────

    def on_connect(self, listener: ConnectListener) -> None:
        """Register a callback fired once per new physical connection."""
        self._connect_listeners.append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        """Register a callback fired on connect failures and broken connections."""
        self._error_listeners.append(listener)

    def _emit_connect(self, conn: PgConnection) -> None:
        logger.info("📊 Database connected")
        for listener in self._connect_listeners:
            try:
                listener(conn)
            except Exception as e:
                logger.warning(f"Connect listener {listener!r} failed: {e}")

    def _emit_error(self, exc: BaseException) -> None:
        logger.error(f"❌ Database error: {exc}")
        for listener in self._error_listeners:
            try:
                listener(exc)
            except Exception as e:
                logger.warning(f"Error listener {listener!r} failed: {e}")

    # ── Checkout / release ────────────────────────────────

    def acquire(self, timeout: Optional[float] = None) -> PgConnection:
        """
        Check out a connection, waiting for one to free up if necessary.

        Args:
            timeout: Seconds to wait. Defaults to ``config.acquire_timeout``.

        Returns:
            A psycopg2 connection owned by the caller until `release`.

        Raises:
            PoolExhaustedError: If every connection stays busy for `timeout`.
            DatabaseConnectionError: If the pool is not open or a new
                connection cannot be established.
        """
        if self.closed:
            raise DatabaseConnectionError("Database pool not initialized. Call open() first.")
        wait = self.config.acquire_timeout if timeout is None else timeout
        if not self._slots.acquire(timeout=wait):
            logger.warning(f"⚠️ Connection pool exhausted after waiting {wait:.2f}s")
            raise PoolExhaustedError(wait, self.config.max_connections)
        try:
            conn = self._checkout()
        except BaseException:
            self._slots.release()
            raise
        with self._lock:
            self._checked_out += 1
        return conn

    def _checkout(self) -> PgConnection:
        while True:
            self._evict_stale()
            with self._lock:
                conn = self._idle.pop()[0] if self._idle else None
            if conn is None:
                conn = self._connect()

            key = id(conn)
            with self._lock:
                is_new = key not in self._known
                self._known.add(key)

            if conn.closed:
                logger.debug("Evicting closed connection")
                self._discard(conn)
                continue

            if is_new:
                self._emit_connect(conn)
            return conn

    def _connect(self) -> PgConnection:
        """A warm connection from psycopg2, or a new physical one."""
        try:
            return self._pool.getconn()
        except psycopg2.OperationalError as e:
            self._emit_error(e)
            raise DatabaseConnectionError(f"Cannot connect to database: {e}") from e
        except pool.PoolError as e:
            raise DatabaseConnectionError(str(e)) from e

    def _evict_stale(self) -> None:
        """Close connections idle longer than idle_timeout, keeping min_connections open."""
        cutoff = time.monotonic() - self.config.idle_timeout
        stale = []
        with self._lock:
            while (
                self._idle
                and self._idle[0][1] < cutoff
                and len(self._known) - len(stale) > self.config.min_connections
            ):
                stale.append(self._idle.popleft()[0])
        for conn in stale:
            logger.debug("Evicting idle connection")
            self._discard(conn)

    def release(self, conn: PgConnection, discard: bool = False) -> None:
        """
        Return a connection back to the pool.
        A connection left inside a transaction is rolled back first.

        Args:
            conn: The connection obtained from `acquire`.
            discard: Close the connection instead of keeping it for reuse.
        """
        try:
            if conn.closed and not discard:
                self._emit_error(DatabaseConnectionError("connection closed while checked out"))
                discard = True
            if self.closed:
                conn.close()
            elif discard or not self._reset(conn):
                self._discard(conn)
            else:
                with self._lock:
                    self._idle.append((conn, time.monotonic()))
        finally:
            with self._lock:
                self._checked_out -= 1
            self._slots.release()
        if not self.closed:
            self._evict_stale()

    @staticmethod
    def _reset(conn: PgConnection) -> bool:
        """Bring a returned connection back to idle. False if it is unusable."""
        status = conn.info.transaction_status
        if status == extensions.TRANSACTION_STATUS_IDLE:
            return True
        if status == extensions.TRANSACTION_STATUS_UNKNOWN:
            return False
        try:
            conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback of returned connection failed: {e}")
            return False
        return True

    def _discard(self, conn: PgConnection) -> None:
        with self._lock:
            self._known.discard(id(conn))
        if self.closed:
            conn.close()
        else:
            self._pool.putconn(conn, close=True)

    @contextmanager
    def connection(self, timeout: Optional[float] = None) -> Iterator[PgConnection]:
        """Context manager: acquire on enter, release on every exit path."""
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    def stats(self) -> dict:
        """Snapshot of pool usage, for diagnostics."""
        with self._lock:
            return {
                "max_connections": self.config.max_connections,
                "checked_out": self._checked_out,
                "idle": len(self._idle),
                "open_connections": len(self._known),
            }


def open_pool(config: DatabaseConfig) -> ConnectionPool:
    """
    Validate `config` and open a pool with it.

    Raises:
        config.ConfigError: If the configuration is invalid.
        DatabaseConnectionError: If the database is unreachable.
    """
    return ConnectionPool(config.validate()).open()
