"""
Shared fixtures: an in-process stand-in for a PostgreSQL server.

`FakeServer.connect` replaces ``psycopg2.connect`` so that the real
psycopg2 ThreadedConnectionPool hands out `FakeConnection` objects. Each
connection records what it executes; a test can script results or errors
with `FakeServer.responder`.
"""

import itertools
import threading
from types import SimpleNamespace
from typing import Callable, Optional

import psycopg2
import pytest

from config import DatabaseConfig
from db.connection import ConnectionPool

IDLE, INTRANS, INERROR = 0, 2, 3


class FakeCursor:
    def __init__(self, conn: "FakeConnection"):
        self.conn = conn
        self.description = None
        self.rowcount = -1
        self._rows: list = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        if self.conn.closed:
            raise psycopg2.InterfaceError("connection already closed")
        self.conn.server.record(self.conn, sql, params)
        self.conn.status = INTRANS
        try:
            result = self.conn.server.respond(sql, params)
        except psycopg2.Error:
            self.conn.status = INERROR
            raise
        columns, rows, rowcount = result
        self.description = [(name,) for name in columns] if columns else None
        self._rows = list(rows)
        self.rowcount = rowcount if rowcount is not None else len(self._rows)

    def fetchall(self):
        return self._rows


class FakeConnection:
    _ids = itertools.count(1)

    def __init__(self, server: "FakeServer", kwargs: dict):
        self.server = server
        self.kwargs = kwargs
        self.number = next(self._ids)
        self.closed = 0
        self.status = IDLE
        self.commits = 0
        self.rollbacks = 0
        self.fail_rollback: Optional[Exception] = None
        self.fail_commit: Optional[Exception] = None

    @property
    def info(self):
        return SimpleNamespace(transaction_status=self.status)

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        if self.fail_commit is not None:
            self.status = INERROR
            raise self.fail_commit
        self.commits += 1
        self.status = IDLE
        self.server.record(self, "COMMIT", None)

    def rollback(self):
        if self.closed:
            raise psycopg2.InterfaceError("connection already closed")
        if self.fail_rollback is not None:
            raise self.fail_rollback
        self.rollbacks += 1
        self.status = IDLE
        self.server.record(self, "ROLLBACK", None)

    def close(self):
        self.closed = 1


class FakeServer:
    """
    Attributes:
        connections: Every connection ever opened.
        statements: (connection number, sql, params) in execution order.
        responder: ``f(sql, params) -> (columns, rows, rowcount)`` or raises.
        reachable: When False, connect() raises OperationalError.
    """

    def __init__(self):
        self.connections: list[FakeConnection] = []
        self.statements: list[tuple] = []
        self.responder: Optional[Callable] = None
        self.reachable = True
        self._lock = threading.Lock()

    def connect(self, *args, **kwargs):
        if not self.reachable:
            raise psycopg2.OperationalError("could not connect to server: Connection refused")
        conn = FakeConnection(self, kwargs)
        with self._lock:
            self.connections.append(conn)
        return conn

    def record(self, conn, sql, params):
        with self._lock:
            self.statements.append((conn.number, sql, params))

    def respond(self, sql, params):
        if self.responder is None:
            return [], [], None
        return self.responder(sql, params)

    def sql(self) -> list[str]:
        """Executed SQL, whitespace-normalized."""
        return [" ".join(s.split()) for _, s, _ in self.statements]


@pytest.fixture
def server(monkeypatch) -> FakeServer:
    fake = FakeServer()
    monkeypatch.setattr(psycopg2, "connect", fake.connect)
    return fake


@pytest.fixture
def make_pool(server):
    pools: list[ConnectionPool] = []

    def factory(**overrides) -> ConnectionPool:
        options = dict(
            url="postgresql://test@localhost/test",
            min_connections=1,
            max_connections=2,
            idle_timeout=30.0,
            connect_timeout=1,
            acquire_timeout=0.2,
        )
        options.update(overrides)
        pool = ConnectionPool(DatabaseConfig(**options).validate())
        pools.append(pool)
        return pool.open()

    yield factory
    for pool in pools:
        pool.close()


@pytest.fixture
def pool(make_pool) -> ConnectionPool:
    return make_pool()
