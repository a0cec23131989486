"""
repositories/plugin_repo.py
----------------------------
Data access layer for plugin records and per-user plugin settings.
"""

from typing import Any, Optional

from psycopg2.extras import Json

from db.connection import ConnectionPool
from db.query import execute
from db.transaction import Transaction, run_transaction
from models.log_entry import LogEntry
from models.plugin import PluginRecord, UserPluginSettings
from repositories.log_repo import LogRepository
from utils.logger import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "id, name, version, author, description, enabled, config, "
    "dependencies, routes, created_at, updated_at"
)


class PluginRepository:
    """Repository for the plugins table."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool
        self.logs = LogRepository(pool)

    def upsert(self, record: PluginRecord) -> PluginRecord:
        """
        Mirror a plugin's runtime metadata into the database.

        Metadata columns are overwritten. For `config`, values already stored
        win over the record's defaults, so settings changed at runtime
        survive a restart while new default keys are still added.

        Returns:
            The stored record.
        """
        sql = f"""
            INSERT INTO plugins (id, name, version, author, description, enabled, config, dependencies, routes)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                version = EXCLUDED.version,
                author = EXCLUDED.author,
                description = EXCLUDED.description,
                config = EXCLUDED.config || plugins.config,
                dependencies = EXCLUDED.dependencies,
                routes = EXCLUDED.routes,
                updated_at = CURRENT_TIMESTAMP
            RETURNING {_COLUMNS};
        """
        row = execute(self.pool, sql, (
            record.id, record.name, record.version, record.author,
            record.description, record.enabled, Json(record.config),
            Json(record.dependencies), Json(record.routes),
        )).first()
        logger.info(f"Registered plugin '{record.id}' v{record.version}")
        return self._row_to_plugin(row)

    def get(self, plugin_id: str) -> Optional[PluginRecord]:
        sql = f"SELECT {_COLUMNS} FROM plugins WHERE id = %s;"
        row = execute(self.pool, sql, (plugin_id,)).first()
        return self._row_to_plugin(row) if row else None

    def update_config(
        self, plugin_id: str, changes: dict[str, Any], changed_by: Optional[int] = None
    ) -> Optional[dict[str, Any]]:
        """
        Merge `changes` into a plugin's stored config and record the change
        in the log table, atomically.

        Args:
            plugin_id: Plugin to update.
            changes: Keys to overwrite.
            changed_by: users.id of whoever made the change.

        Returns:
            The merged config, or None if the plugin does not exist.
        """
        def work(tx: Transaction) -> Optional[dict[str, Any]]:
            current = tx.execute(
                "SELECT config FROM plugins WHERE id = %s FOR UPDATE;", (plugin_id,)
            ).scalar()
            if current is None:
                return None
            merged = {**current, **changes}
            tx.execute(
                """
                UPDATE plugins SET config = %s, updated_at = CURRENT_TIMESTAMP
                WHERE id = %s;
                """,
                (Json(merged), plugin_id),
            )
            self.logs.add(
                LogEntry(
                    level="info",
                    message=f"Plugin settings updated: {plugin_id}",
                    user_id=changed_by,
                    metadata={"plugin_id": plugin_id, "changes": changes},
                ),
                tx=tx,
            )
            return merged

        merged = run_transaction(self.pool, work)
        if merged is not None:
            logger.info(f"Updated config of plugin '{plugin_id}': {sorted(changes)}")
        return merged

    def set_enabled(self, plugin_id: str, enabled: bool) -> bool:
        """Globally enable/disable a plugin. Returns True if it exists."""
        sql = """
            UPDATE plugins SET enabled = %s, updated_at = CURRENT_TIMESTAMP
            WHERE id = %s;
        """
        return execute(self.pool, sql, (enabled, plugin_id)).rowcount > 0

    # ── HELPERS ───────────────────────────────────────────

    @staticmethod
    def _row_to_plugin(row: tuple) -> PluginRecord:
        """Convert a database row tuple to a PluginRecord."""
        return PluginRecord(
            id=row[0],
            name=row[1],
            version=row[2],
            author=row[3],
            description=row[4],
            enabled=row[5],
            config=row[6] or {},
            dependencies=row[7] or [],
            routes=row[8] or [],
            created_at=row[9],
            updated_at=row[10],
        )


class UserPluginRepository:
    """Repository for the user_plugins join table."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    def get(self, user_id: int, plugin_id: str) -> Optional[UserPluginSettings]:
        sql = """
            SELECT user_id, plugin_id, enabled, config
            FROM user_plugins WHERE user_id = %s AND plugin_id = %s;
        """
        row = execute(self.pool, sql, (user_id, plugin_id)).first()
        if row:
            return UserPluginSettings(
                user_id=row[0], plugin_id=row[1], enabled=row[2], config=row[3] or {}
            )
        return None

    def set_enabled(self, user_id: int, plugin_id: str, enabled: bool) -> None:
        sql = """
            INSERT INTO user_plugins (user_id, plugin_id, enabled)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id, plugin_id) DO UPDATE SET enabled = EXCLUDED.enabled;
        """
        execute(self.pool, sql, (user_id, plugin_id, enabled))

    def set_config(self, user_id: int, plugin_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """
        Merge `changes` into the user's override config for a plugin.

        Returns:
            The stored override config.
        """
        sql = """
            INSERT INTO user_plugins (user_id, plugin_id, config)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id, plugin_id)
            DO UPDATE SET config = user_plugins.config || EXCLUDED.config
            RETURNING config;
        """
        return execute(self.pool, sql, (user_id, plugin_id, Json(changes))).scalar() or {}
