"""
models/user.py
--------------
Domain model for user accounts.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """
    Represents a row of the users table.

    Attributes:
        id: Database primary key.
        username: Unique login name. Telegram users are stored as ``tg_<id>``.
        email: Optional unique email.
        role: Either 'admin' or 'user'.
        theme: UI theme preference.
        status: Account status (e.g. 'active').
        created_at: Row creation timestamp.
        last_login: Last time the user was seen.

    The password hash is deliberately not part of the model.
    """
    id: int
    username: str
    role: str = "user"  # 'admin' | 'user'
    email: Optional[str] = None
    theme: str = "dark"
    status: str = "active"
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    def is_admin(self) -> bool:
        return self.role == "admin"

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"
