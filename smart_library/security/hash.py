from __future__ import annotations

import bcrypt

from smart_library.core.settings import get_library_settings


def hash_password(password: str) -> str:
    """Hash a plain-text password with a per-password bcrypt salt."""
    rounds = get_library_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plain-text password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False
