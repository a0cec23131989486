"""
config.py
---------
Central configuration module. Loads all environment variables
from the .env file and exposes them as typed constants.

Database settings are gathered into an explicit `DatabaseConfig`
that the startup routine validates and hands to the pool.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


class ConfigError(ValueError):
    """Raised when the configuration is incomplete or inconsistent."""


def _int_list(raw: str) -> list[int]:
    return [int(uid.strip()) for uid in raw.split(",") if uid.strip()] if raw else []


# ── Runtime ───────────────────────────────────────────────
APP_ENV: str = os.getenv("APP_ENV", "development")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ── Telegram ──────────────────────────────────────────────
TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

# ── Security ──────────────────────────────────────────────
ALLOWED_USER_IDS: list[int] = _int_list(os.getenv("ALLOWED_USER_IDS", ""))
ADMIN_USER_IDS: list[int] = _int_list(os.getenv("ADMIN_USER_IDS", ""))

# ── Rate Limiting ─────────────────────────────────────────
RATE_LIMIT_MESSAGES: int = int(os.getenv("RATE_LIMIT_MESSAGES", "30"))
RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

# ── Admin seed ────────────────────────────────────────────
ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "")
ADMIN_EMAIL: Optional[str] = os.getenv("ADMIN_EMAIL") or None

# ── remove.bg ─────────────────────────────────────────────
REMOVEBG_API_KEY: str = os.getenv("REMOVEBG_API_KEY", "")
REMOVEBG_TIMEOUT_SECONDS: int = int(os.getenv("REMOVEBG_TIMEOUT_SECONDS", "60"))
UPLOAD_DIR: Path = Path(os.getenv("UPLOAD_DIR", "uploads"))


# ── PostgreSQL ────────────────────────────────────────────
class TLSPolicy(str, Enum):
    """TLS mode for database connections, mapped onto libpq's sslmode."""

    OFF = "off"
    REQUIRE = "require"
    VERIFY = "verify-full"

    @property
    def sslmode(self) -> str:
        return {"off": "disable", "require": "require", "verify-full": "verify-full"}[self.value]

    @classmethod
    def for_environment(cls, app_env: str) -> "TLSPolicy":
        """Production talks TLS without verification, everything else plaintext."""
        return cls.REQUIRE if app_env == "production" else cls.OFF


def _default_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "bgbot")
    user = os.getenv("DB_USER", "bgbot_user")
    password = os.getenv("DB_PASS", "")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


@dataclass
class DatabaseConfig:
    """
    Settings for the connection pool.

    Attributes:
        url: libpq connection string / URL.
        min_connections: Idle connections kept open between checkouts.
        max_connections: Upper bound on concurrently checked-out connections.
        idle_timeout: Seconds an idle connection may sit in the pool before
            it is closed and replaced at the next checkout.
        connect_timeout: Seconds allowed to establish a physical connection.
        acquire_timeout: Seconds a checkout may wait for a free connection.
        tls_policy: TLS mode, see `TLSPolicy`.
    """
    url: str
    min_connections: int = 1
    max_connections: int = 20
    idle_timeout: float = 30.0
    connect_timeout: int = 5
    acquire_timeout: float = 30.0
    tls_policy: TLSPolicy = field(default=TLSPolicy.OFF)

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Build a config from the process environment (read at call time)."""
        app_env = os.getenv("APP_ENV", "development")
        raw_tls = os.getenv("DB_TLS")
        try:
            tls = TLSPolicy(raw_tls) if raw_tls else TLSPolicy.for_environment(app_env)
            return cls(
                url=_default_database_url(),
                min_connections=int(os.getenv("DB_MIN_CONNECTIONS", "1")),
                max_connections=int(os.getenv("DB_MAX_CONNECTIONS", "20")),
                idle_timeout=float(os.getenv("DB_IDLE_TIMEOUT", "30")),
                connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", "5")),
                acquire_timeout=float(os.getenv("DB_ACQUIRE_TIMEOUT", "30")),
                tls_policy=tls,
            )
        except ValueError as e:
            raise ConfigError(f"Invalid database configuration: {e}") from e

    def validate(self) -> "DatabaseConfig":
        """Check value ranges. Returns self so it can be chained."""
        if not self.url:
            raise ConfigError("Database URL is empty")
        if self.max_connections < 1:
            raise ConfigError("max_connections must be at least 1")
        if not 0 <= self.min_connections <= self.max_connections:
            raise ConfigError("min_connections must be between 0 and max_connections")
        if self.idle_timeout <= 0:
            raise ConfigError("idle_timeout must be positive")
        if self.connect_timeout < 1:
            raise ConfigError("connect_timeout must be at least 1 second")
        if self.acquire_timeout < 0:
            raise ConfigError("acquire_timeout must not be negative")
        return self

    def connect_kwargs(self) -> dict:
        """Keyword arguments for `psycopg2.connect`."""
        return {
            "dsn": self.url,
            "connect_timeout": self.connect_timeout,
            "sslmode": self.tls_policy.sslmode,
        }
