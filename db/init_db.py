"""
db/init_db.py
-------------
Creates the database schema (tables and indexes) if they do not already
exist, then seeds the administrative user.
Run this module directly to initialize a fresh database:
    python -m db.init_db
"""

from typing import Optional

from db.connection import ConnectionPool
from db.errors import BootstrapError, DatabaseError
from db.query import execute
from utils.passwords import BCRYPT_ROUNDS, hash_password
from utils.logger import get_logger

logger = get_logger(__name__)

ADMIN_USERNAME = "admin"

SCHEMA_SQL = """
-- Users table: accounts with hashed passwords and UI preferences
CREATE TABLE IF NOT EXISTS users (
    id              SERIAL PRIMARY KEY,
    username        VARCHAR(50) UNIQUE NOT NULL,
    email           VARCHAR(255) UNIQUE,
    password        VARCHAR(255) NOT NULL,
    role            VARCHAR(20) DEFAULT 'user',
    avatar          VARCHAR(500),
    theme           VARCHAR(20) DEFAULT 'dark',
    created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_login      TIMESTAMP,
    status          VARCHAR(20) DEFAULT 'active'
);

-- Plugins table: persisted mirror of runtime plugin metadata
CREATE TABLE IF NOT EXISTS plugins (
    id              VARCHAR(100) PRIMARY KEY,
    name            VARCHAR(255) NOT NULL,
    version         VARCHAR(50) NOT NULL,
    author          VARCHAR(255),
    description     TEXT,
    enabled         BOOLEAN DEFAULT true,
    config          JSONB DEFAULT '{}',
    dependencies    JSONB DEFAULT '[]',
    routes          JSONB DEFAULT '[]',
    created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Per-user plugin toggle and configuration override
CREATE TABLE IF NOT EXISTS user_plugins (
    user_id         INTEGER REFERENCES users(id) ON DELETE CASCADE,
    plugin_id       VARCHAR(100) REFERENCES plugins(id) ON DELETE CASCADE,
    enabled         BOOLEAN DEFAULT true,
    config          JSONB DEFAULT '{}',
    PRIMARY KEY (user_id, plugin_id)
);

-- Session store for the web front-end
CREATE TABLE IF NOT EXISTS sessions (
    sid             VARCHAR PRIMARY KEY,
    sess            JSON NOT NULL,
    expire          TIMESTAMP(6) NOT NULL
);

-- Append-only application log
CREATE TABLE IF NOT EXISTS logs (
    id              SERIAL PRIMARY KEY,
    level           VARCHAR(20),
    message         TEXT,
    user_id         INTEGER,
    ip_address      INET,
    user_agent      TEXT,
    metadata        JSONB,
    created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Indexes for faster queries
CREATE INDEX IF NOT EXISTS idx_users_username ON users(username);
CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
CREATE INDEX IF NOT EXISTS idx_plugins_enabled ON plugins(enabled);
CREATE INDEX IF NOT EXISTS idx_sessions_expire ON sessions(expire);
CREATE INDEX IF NOT EXISTS idx_logs_created ON logs(created_at);
CREATE INDEX IF NOT EXISTS idx_logs_level ON logs(level);
"""

_ADMIN_EXISTS_SQL = "SELECT id FROM users WHERE username = %s;"

_SEED_ADMIN_SQL = """
    INSERT INTO users (username, email, password, role, theme)
    VALUES (%s, %s, %s, %s, %s)
    ON CONFLICT (username) DO NOTHING;
"""


def create_tables(pool: ConnectionPool) -> None:
    """
    Execute the schema SQL to create all tables and indexes.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    execute(pool, SCHEMA_SQL)
    logger.info("✅ Database tables created")


def seed_admin(
    pool: ConnectionPool,
    password: Optional[str],
    email: Optional[str] = None,
    rounds: int = BCRYPT_ROUNDS,
) -> bool:
    """
    Insert the `admin` user unless one already exists.
    An existing admin's password is never reset.

    Returns:
        True if a row was inserted.

    Raises:
        BootstrapError: If an admin has to be created and `password` is empty.
    """
    if execute(pool, _ADMIN_EXISTS_SQL, (ADMIN_USERNAME,)).first():
        logger.info("Admin user already present, skipping seed.")
        return False

    if not password:
        raise BootstrapError("ADMIN_PASSWORD is not set; refusing to seed a default admin credential.")
    hashed = hash_password(password, rounds)
    inserted = execute(
        pool, _SEED_ADMIN_SQL, (ADMIN_USERNAME, email, hashed, "admin", "dark")
    ).rowcount > 0
    if inserted:
        logger.info(f"✅ Admin user created (username: {ADMIN_USERNAME})")
    return inserted


def ensure_schema(
    pool: ConnectionPool,
    admin_password: Optional[str],
    admin_email: Optional[str] = None,
    bcrypt_rounds: int = BCRYPT_ROUNDS,
) -> None:
    """
    Bring the database to the expected schema and seed the admin account.
    Idempotent: safe on every process start.

    Args:
        pool: The process connection pool.
        admin_password: Plain-text password for a freshly seeded admin.
            Only needed while no admin exists; there is no built-in
            default credential.
        admin_email: Optional email stored on the admin row.
        bcrypt_rounds: bcrypt cost factor.

    Raises:
        BootstrapError: If an admin must be seeded without a password, or
            any statement fails.
    """
    try:
        create_tables(pool)
        seed_admin(pool, admin_password, admin_email, bcrypt_rounds)
    except BootstrapError as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise
    except DatabaseError as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise BootstrapError(f"Database initialization failed: {e}") from e


if __name__ == "__main__":
    from config import ADMIN_EMAIL, ADMIN_PASSWORD, DatabaseConfig
    from db.connection import open_pool

    db = open_pool(DatabaseConfig.from_env())
    try:
        ensure_schema(db, ADMIN_PASSWORD, ADMIN_EMAIL)
    finally:
        db.close()
    print("✅ Database schema created successfully.")
