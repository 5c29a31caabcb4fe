"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
authority do the work; these only own the shape.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from activity.models import ClientInfo


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    PENDING_MFA = "pending_mfa"


@dataclass
class User:
    """A row of the users table.

    remember_token holds the one remember-me token that is currently valid for
    this user; minting a new one overwrites it. recovery_token is the pending
    password-recovery token (the historical "token" column).
    """

    username: str
    password_hash: str
    id: Optional[int] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    remember_token: Optional[str] = None
    recovery_token: Optional[str] = None
    mfa_required: bool = False


@dataclass
class Session:
    """Server-side session state, restored per request from the sessions table.

    session_id is None until the session is first saved. modified/destroyed
    tell the session middleware whether to write or delete the row when the
    request finishes. rotated_from is the id a login retired; its row is
    deleted when the session is next written.
    """

    session_id: Optional[str] = None
    logged_in: bool = False
    user_id: Optional[int] = None
    mfa_required: bool = False
    modified: bool = False
    destroyed: bool = False
    rotated_from: Optional[str] = None


@dataclass
class CookieChange:
    """A Set-Cookie to emit on the response. expire=True clears the cookie client-side."""

    name: str
    value: str = ""
    max_age: Optional[int] = None
    expire: bool = False


@dataclass
class AuthContext:
    """Everything an authentication decision reads or writes for one request.

    Built by the HTTP layer at request start; the authority mutates session
    and appends to cookie_changes, and the HTTP layer applies both when the
    response goes out.
    """

    session: Session
    cookies: Mapping[str, str] = field(default_factory=dict)
    client: ClientInfo = field(default_factory=ClientInfo)
    cookie_changes: list[CookieChange] = field(default_factory=list)


@dataclass
class AuthCheck:
    """Result of SessionAuthority.check_authenticated().

    verdict is AUTHENTICATED for a soft pass too (allow_session_continuation),
    in which case user_id is None. action is whatever the triggered callback
    returned (typically a redirect response), or None.
    """

    verdict: AuthState
    user_id: Optional[int] = None
    action: Any = None

    @property
    def authenticated(self) -> bool:
        return self.verdict is AuthState.AUTHENTICATED
