"""
repositories/log_repo.py
-------------------------
Data access layer for the append-only `logs` table.
Rows are only ever inserted and read; nothing here updates or deletes them.
"""

from typing import Optional

from psycopg2.extras import Json

from db.connection import ConnectionPool
from db.query import execute
from db.transaction import Transaction
from models.log_entry import LogEntry


class LogRepository:
    """Repository for the logs table."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    def add(self, entry: LogEntry, tx: Optional[Transaction] = None) -> LogEntry:
        """
        Append a log row.

        Args:
            entry: The entry to persist.
            tx: Run inside this transaction instead of on its own.

        Returns:
            The same entry with `id` and `created_at` populated.
        """
        sql = """
            INSERT INTO logs (level, message, user_id, ip_address, user_agent, metadata)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id, created_at;
        """
        params = (
            entry.level, entry.message, entry.user_id,
            entry.ip_address, entry.user_agent, Json(entry.metadata),
        )
        result = tx.execute(sql, params) if tx else execute(self.pool, sql, params)
        entry.id, entry.created_at = result.first()
        return entry

    def count_matching(self, pattern: str, level: Optional[str] = None) -> int:
        """
        Count rows whose message matches a SQL LIKE pattern.

        Args:
            pattern: LIKE pattern, e.g. ``'Background removed%'``.
            level: Optional level filter.
        """
        sql = "SELECT COUNT(*) FROM logs WHERE message LIKE %s"
        params: list = [pattern]
        if level:
            sql += " AND level = %s"
            params.append(level)
        return int(execute(self.pool, sql + ";", params).scalar() or 0)
