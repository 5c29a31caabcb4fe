"""
auth/passwords.py -- Credential verification (bcrypt).

Bcrypt is the right choice for low-entropy secrets (passwords): it is salted
per hash and its cost factor makes brute-force expensive. checkpw() compares
in constant time. bcrypt is used directly rather than through passlib, whose
wrap-bug self-check feeds bcrypt 4.x a >72-byte password and fails.

verify_password() is a pure function: no state, no logging, no side effects.
A malformed stored hash is a mismatch, not an error.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import bcrypt


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt; the API layer caps
    input length well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load. The authority verifies against it when the
# username does not exist, so an unknown username costs the same bcrypt work
# as a wrong password and response time does not reveal which one it was.
DUMMY_HASH: str = hash_password("nevi_timing_dummy")
