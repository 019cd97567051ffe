"""
auth/passwords.py -- Password hashing (bcrypt, direct usage).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which current
bcrypt releases reject with an explicit error.

hash_password() and verify_password() are CPU-bound by design. They are only
called from sync code paths that FastAPI runs in its threadpool, never
directly on the event loop.
"""

from __future__ import annotations

import secrets

import bcrypt


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt raises ValueError for inputs longer than 72 bytes. The API layer
    rejects such passwords with a 422 before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is treated as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def random_password_hash() -> str:
    """Hash of a random secret nobody knows. Used for accounts created via Google sign-in."""
    return hash_password(secrets.token_urlsafe(32))


# Timing equalization dummy hash. Computed once at module load so the first
# login attempt is not measurably slower than subsequent ones.
DUMMY_HASH: str = hash_password("authcore_timing_dummy")
