"""Password hashing, the default credential collaborator.

bcrypt salts automatically and produces hashes like "$2b$12$...", where
12 is the cost. Hashes made with a lower cost than configured are
flagged by needs_upgrade() so a successful login can re-hash them.
"""

import bcrypt

from codehub.config import settings

_BCRYPT_MAX_BYTES = 72


def hash_password(password: str, rounds: int | None = None) -> str:
    """Hash a password with bcrypt. Input beyond 72 bytes is ignored."""
    pw_bytes = password.encode("utf-8")[:_BCRYPT_MAX_BYTES]
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a candidate password against a stored bcrypt hash."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:_BCRYPT_MAX_BYTES],
            password_hash.encode("utf-8"),
        )
    except (ValueError, TypeError):
        return False


def needs_upgrade(password_hash: str) -> bool:
    """True if the hash was made with fewer rounds than configured."""
    return _cost_of(password_hash) < settings.bcrypt_rounds


def _cost_of(password_hash: str) -> int:
    # "$2b$12$<salt+digest>" → 12
    try:
        return int(password_hash.split("$")[2])
    except (IndexError, ValueError):
        return 0
