"""
Tests for the schema bootstrapper: idempotent DDL, admin seeding and
fatal error reporting.
"""

import bcrypt
import psycopg2
import pytest

from db.errors import BootstrapError, QueryError
from db.init_db import SCHEMA_SQL, ensure_schema


class UsersTable:
    """Minimal emulation of the users table for the bootstrap statements."""

    def __init__(self):
        self.rows: dict[str, dict] = {}

    def __call__(self, sql, params):
        flat = " ".join(sql.split())
        if flat.startswith("SELECT id FROM users WHERE username"):
            row = self.rows.get(params[0])
            return ["id"], [(row["id"],)] if row else [], None
        if flat.startswith("INSERT INTO users"):
            username, email, password, role, theme = params
            if username in self.rows:
                return [], [], 0
            self.rows[username] = {
                "id": len(self.rows) + 1, "email": email,
                "password": password, "role": role, "theme": theme,
            }
            return [], [], 1
        return [], [], None


@pytest.fixture
def users(server) -> UsersTable:
    table = UsersTable()
    server.responder = table
    return table


def test_every_ddl_statement_is_idempotent():
    creates = [line for line in SCHEMA_SQL.splitlines() if line.startswith("CREATE")]

    assert len(creates) == 11
    assert all("IF NOT EXISTS" in line for line in creates)


def test_schema_creates_all_tables():
    for table in ("users", "plugins", "user_plugins", "sessions", "logs"):
        assert f"CREATE TABLE IF NOT EXISTS {table} (" in SCHEMA_SQL


def test_first_run_seeds_one_admin(pool, server, users):
    ensure_schema(pool, "s3cret-admin", "admin@example.com", bcrypt_rounds=4)

    assert list(users.rows) == ["admin"]
    admin = users.rows["admin"]
    assert admin["role"] == "admin"
    assert admin["email"] == "admin@example.com"
    assert admin["password"] != "s3cret-admin"
    assert bcrypt.checkpw(b"s3cret-admin", admin["password"].encode())
    assert pool.stats()["checked_out"] == 0


def test_second_run_neither_duplicates_nor_resets_admin(pool, server, users):
    ensure_schema(pool, "first-password", bcrypt_rounds=4)
    stored = users.rows["admin"]["password"]

    ensure_schema(pool, "second-password", bcrypt_rounds=4)

    assert len(users.rows) == 1
    assert users.rows["admin"]["password"] == stored
    inserts = [sql for sql in server.sql() if sql.startswith("INSERT INTO users")]
    assert len(inserts) == 1


def test_seed_uses_on_conflict_do_nothing(pool, server, users):
    ensure_schema(pool, "pw", bcrypt_rounds=4)

    insert = next(sql for sql in server.sql() if sql.startswith("INSERT INTO users"))
    assert "ON CONFLICT (username) DO NOTHING" in insert


def test_missing_admin_password_is_fatal_when_no_admin_exists(pool, server, users):
    with pytest.raises(BootstrapError, match="ADMIN_PASSWORD"):
        ensure_schema(pool, "")

    assert users.rows == {}
    assert not any(sql.startswith("INSERT INTO users") for sql in server.sql())
    assert pool.stats()["checked_out"] == 0


def test_missing_admin_password_is_fine_once_admin_exists(pool, server, users):
    ensure_schema(pool, "first-password", bcrypt_rounds=4)
    stored = users.rows["admin"]["password"]

    ensure_schema(pool, None)

    assert users.rows["admin"]["password"] == stored


def test_ddl_failure_raises_bootstrap_error(pool, server):
    def responder(sql, params):
        raise psycopg2.ProgrammingError("permission denied for schema public")

    server.responder = responder

    with pytest.raises(BootstrapError) as info:
        ensure_schema(pool, "pw", bcrypt_rounds=4)

    assert isinstance(info.value.__cause__, QueryError)
    assert pool.stats()["checked_out"] == 0
