"""
utils/passwords.py
------------------
bcrypt helpers for the users.password column.
"""

import secrets

import bcrypt

BCRYPT_ROUNDS = 12


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a password with bcrypt, returning the text stored in users.password."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def unusable_password(rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash of a random secret, for accounts that never log in with a password."""
    return hash_password(secrets.token_urlsafe(32), rounds)
