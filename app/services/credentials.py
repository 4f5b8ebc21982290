"""Password hashing backed by bcrypt."""

from __future__ import annotations

import bcrypt

# bcrypt only looks at the first 72 bytes; newer releases refuse longer input
_MAX_SECRET_BYTES = 72


def _encode(secret: str) -> bytes:
    return secret.encode("utf-8")[:_MAX_SECRET_BYTES]


def hash_password(secret: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_encode(secret), bcrypt.gensalt(rounds)).decode("ascii")


def verify_password(secret: str, digest: str | None) -> bool:
    """Return True when ``secret`` matches the stored bcrypt ``digest``."""
    if not secret or not digest:
        return False
    try:
        return bcrypt.checkpw(_encode(secret), digest.encode("ascii"))
    except (ValueError, UnicodeEncodeError):
        return False


__all__ = ["hash_password", "verify_password"]
