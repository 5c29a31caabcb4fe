"""
auth/sessions.py -- Server-side session storage keyed by an opaque session id.

The client holds only the session id (an httpOnly cookie); logged_in,
user_id and mfa_required live in the sessions table. A session id that is
missing, malformed or unknown loads as a fresh, unauthenticated Session --
it is never an error.

Session ids are secrets.token_urlsafe(32) (256 bits) and are assigned on
first save, so anonymous requests that never touch the session never write
a row.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from auth.models import Session
from store.records import RecordStore
from store.schema import sessions

logger = logging.getLogger("nevi.auth")

# token_urlsafe(32) yields 43 characters; anything longer cannot be ours.
_MAX_SESSION_ID_LENGTH = 64


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class SessionStore:
    """Load, save and destroy Session rows.

    Usage:
        store = SessionStore(records)
        session = store.load(request.cookies.get("session_id"))
        session.logged_in = True
        session_id = store.save(session)
    """

    def __init__(self, records: RecordStore) -> None:
        self.records = records

    def load(self, session_id: Optional[str]) -> Session:
        """Return the stored session for session_id, or a fresh empty one."""
        if not session_id or len(session_id) > _MAX_SESSION_ID_LENGTH:
            return Session()
        row = self.records.fetch_one(sessions, "*", sessions.c.id == session_id).unwrap()
        if row is None:
            return Session()
        return Session(
            session_id=row["id"],
            logged_in=bool(row["logged_in"]),
            user_id=row["user_id"],
            mfa_required=bool(row["mfa_required"]),
        )

    def save(self, session: Session) -> str:
        """Persist session and return its id, assigning a new id if it has none."""
        columns = ["logged_in", "user_id", "mfa_required", "updated_at"]
        values = [1 if session.logged_in else 0, session.user_id, 1 if session.mfa_required else 0, _now_iso()]
        if session.session_id is not None:
            result = self.records.update(sessions, columns, values, sessions.c.id == session.session_id)
            if result.rowcount > 0:
                session.modified = False
                return session.session_id
        # Row vanished (destroyed by a concurrent logout) or never existed: never reuse the old id.
        session.session_id = new_session_id()
        self.records.insert(sessions, ["id", *columns], [session.session_id, *values])
        session.modified = False
        return session.session_id

    def destroy(self, session_id: Optional[str]) -> None:
        """Delete the stored session. Unknown or missing ids are a no-op."""
        if not session_id:
            return
        self.records.delete(sessions, sessions.c.id == session_id)
        logger.debug("Session destroyed")
