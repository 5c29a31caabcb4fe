"""
auth/store.py -- User repository on top of the generic record store.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The authority and the routes never build statements -- every
where-expression here is composed from users.c columns, so usernames and
tokens arriving from a request are only ever bound parameters.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from typing import Optional

from auth.models import User
from store.records import RecordStore
from store.schema import users


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore(RecordStore("sqlite:///nevi.db"))
        user_id = store.create_user(User(username="alice", password_hash=hash_password("secret")))
        user = store.get_by_username("alice")
    """

    def __init__(self, records: RecordStore) -> None:
        self.records = records

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_username(self, username: str) -> Optional[User]:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        row = self.records.fetch_one(users, "*", users.c.username == username).unwrap()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        row = self.records.fetch_one(users, "*", users.c.id == user_id).unwrap()
        return _row_to_user(row) if row is not None else None

    def get_by_remember_token(self, token: str) -> Optional[User]:
        """Resolve a remember-me cookie value to its user.

        Empty tokens never match: a cleared column is NULL, and an empty cookie
        must not be treated as a credential.
        """
        if not token:
            return None
        row = self.records.fetch_one(users, "*", users.c.remember_token == token).unwrap()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises StoreError if the username already exists (UNIQUE constraint).
        Used by tests and provisioning scripts; the application itself has no
        registration flow.
        """
        result = self.records.insert(
            users,
            ["username", "password", "email", "firstName", "lastName", "mfa_required"],
            [
                user.username,
                user.password_hash,
                user.email,
                user.first_name,
                user.last_name,
                1 if user.mfa_required else 0,
            ],
        )
        return result.inserted_id

    def set_remember_token(self, user_id: int, token: str) -> bool:
        """Store token as the user's only valid remember-me token.

        Overwrites any previous token, which revokes it. Returns True if the
        user row exists.
        """
        result = self.records.update(users, ["remember_token"], [token], users.c.id == user_id)
        return result.rowcount > 0

    def revoke_remember_token(self, token: str) -> bool:
        """Clear the stored remember-me token equal to token. Returns True if one was cleared."""
        if not token:
            return False
        result = self.records.update(users, ["remember_token"], [None], users.c.remember_token == token)
        return result.rowcount > 0

    def clear_remember_token(self, user_id: int) -> bool:
        """Revoke whatever remember-me token the user holds."""
        result = self.records.update(users, ["remember_token"], [None], users.c.id == user_id)
        return result.rowcount > 0

    def set_recovery_token(self, email: str, token: str) -> bool:
        """Store a password-recovery token on the account registered to email."""
        result = self.records.update(users, ["token"], [token], users.c.email == email)
        return result.rowcount > 0

    def set_mfa_required(self, user_id: int, required: bool) -> bool:
        """Turn the account's MFA requirement on or off."""
        result = self.records.update(users, ["mfa_required"], [1 if required else 0], users.c.id == user_id)
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row: dict) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        password_hash=row["password"],
        email=row["email"],
        first_name=row["firstName"],
        last_name=row["lastName"],
        remember_token=row["remember_token"],
        recovery_token=row["token"],
        mfa_required=bool(row["mfa_required"]),
    )
