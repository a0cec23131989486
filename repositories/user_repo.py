"""
repositories/user_repo.py
--------------------------
Data access layer for user records.
"""

from typing import Optional

from db.connection import ConnectionPool
from db.query import execute
from db.transaction import Transaction, run_transaction
from models.user import User
from utils.logger import get_logger
from utils.passwords import BCRYPT_ROUNDS, unusable_password

logger = get_logger(__name__)

_COLUMNS = "id, username, role, email, theme, status, created_at, last_login"


class UserRepository:
    """Repository for CRUD operations on the users table."""

    def __init__(self, pool: ConnectionPool, bcrypt_rounds: int = BCRYPT_ROUNDS):
        self.pool = pool
        self.bcrypt_rounds = bcrypt_rounds

    def get_by_username(self, username: str) -> Optional[User]:
        """
        Fetch a user by username.

        Returns:
            A User or None.
        """
        sql = f"SELECT {_COLUMNS} FROM users WHERE username = %s;"
        row = execute(self.pool, sql, (username,)).first()
        return self._row_to_user(row) if row else None

    def ensure_user(self, username: str, email: Optional[str] = None) -> User:
        """
        Insert a user if they don't exist, then stamp `last_login`.
        New accounts get an unusable password: they are identified by the
        front-end, not by a login form.

        Args:
            username: Unique username.
            email: Optional email for new accounts.

        Returns:
            The stored User.
        """
        existing = self.get_by_username(username)
        password = None if existing else unusable_password(self.bcrypt_rounds)

        def work(tx: Transaction) -> User:
            if password is not None:
                tx.execute(
                    """
                    INSERT INTO users (username, email, password)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (username) DO NOTHING;
                    """,
                    (username, email, password),
                )
            row = tx.execute(
                f"""
                UPDATE users SET last_login = CURRENT_TIMESTAMP
                WHERE username = %s
                RETURNING {_COLUMNS};
                """,
                (username,),
            ).first()
            return self._row_to_user(row)

        user = run_transaction(self.pool, work)
        if existing is None:
            logger.info(f"Registered user {user.username} (#{user.id})")
        return user

    # ── HELPERS ───────────────────────────────────────────

    @staticmethod
    def _row_to_user(row: tuple) -> User:
        """Convert a database row tuple to a User domain object."""
        return User(
            id=row[0],
            username=row[1],
            role=row[2],
            email=row[3],
            theme=row[4],
            status=row[5],
            created_at=row[6],
            last_login=row[7],
        )
