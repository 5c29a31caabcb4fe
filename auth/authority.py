"""
auth/authority.py -- The authentication state machine.

States (see auth.models.AuthState):
  UNAUTHENTICATED -> login ok, no MFA      -> AUTHENTICATED
  UNAUTHENTICATED -> login ok, MFA on      -> PENDING_MFA
  PENDING_MFA     -> clear_mfa()           -> AUTHENTICATED
  any             -> logout()              -> UNAUTHENTICATED
  any             -> valid remember cookie -> AUTHENTICATED

Every operation works on an explicit AuthContext (session + inbound cookies
+ outbound cookie changes + client metadata) instead of request globals, so
the machine runs the same under FastAPI and in a unit test.

Security design decisions:
  Passwords: verify_password() always runs, against DUMMY_HASH when the
       username is unknown, so response time does not reveal whether a
       username exists.

  Remember tokens: secrets.token_hex(16) -- 128 bits, hex encoded. The users
       table holds one token per user; minting overwrites the previous one,
       which revokes it. Tokens do not expire server-side: they stay valid
       until the next remember-me login replaces them or logout clears them.
       Concurrent remember-me logins for one user race on the column and the
       last writer wins.

  Session ids: login and remember-me restore retire the presented session
       id (Session.rotated_from) so a fresh one is minted on save. An id
       planted in a browser before login never becomes authenticated.

  Negative outcomes (wrong password, no session, stale token) are ordinary
       return values. Only record store failures raise (StoreError).

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from typing import Any, Optional

from activity.logger import ActivityLogger
from auth.models import AuthCheck, AuthContext, AuthState, CookieChange, Session, User
from auth.passwords import DUMMY_HASH, verify_password
from auth.store import UserStore

logger = logging.getLogger("nevi.auth")

_TEN_YEARS = 10 * 365 * 24 * 60 * 60


def generate_remember_token() -> str:
    """Return a new 128-bit remember-me token as 32 hex characters."""
    return secrets.token_hex(16)


def state_of(session: Session) -> AuthState:
    """Classify a session into one of the three authentication states."""
    if not session.logged_in:
        return AuthState.UNAUTHENTICATED
    if session.mfa_required:
        return AuthState.PENDING_MFA
    return AuthState.AUTHENTICATED


class SessionAuthority:
    """Owns login, per-request authentication checks, and logout.

    Usage:
        authority = SessionAuthority(user_store, activity)
        ok = authority.login(ctx, "alice", "correct-horse", remember=True)
        check = authority.check_authenticated(
            ctx,
            on_mfa_required=lambda: RedirectResponse("/verify"),
            on_unauthenticated=lambda: RedirectResponse("/login"),
        )
        if check.action is not None:
            return check.action
    """

    def __init__(
        self,
        users: UserStore,
        activity: Optional[ActivityLogger] = None,
        *,
        remember_cookie_name: str = "remember_me",
        remember_cookie_max_age: int = _TEN_YEARS,
    ) -> None:
        self.users = users
        self.activity = activity
        self.remember_cookie_name = remember_cookie_name
        self.remember_cookie_max_age = remember_cookie_max_age

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, ctx: AuthContext, username: str, password: str, remember: bool = False) -> bool:
        """Verify username/password and bind the session to the user.

        Returns False (session untouched) for an unknown user or a wrong
        password. With remember=True a fresh remember-me token replaces any
        earlier one and is queued as a cookie on ctx.
        """
        user = self.users.get_by_username(username)
        if user is None:
            verify_password(password, DUMMY_HASH)
            self._record(None, "login", "failed", username, ctx)
            return False
        if not verify_password(password, user.password_hash):
            self._record(user.id, "login", "failed", username, ctx)
            return False

        self._bind(ctx.session, user, user.mfa_required)
        if remember:
            token = generate_remember_token()
            self.users.set_remember_token(user.id, token)
            ctx.cookie_changes.append(
                CookieChange(self.remember_cookie_name, token, max_age=self.remember_cookie_max_age)
            )
        logger.info("User %s logged in (remember=%s, mfa=%s)", user.id, remember, user.mfa_required)
        self._record(user.id, "login", "succeeded", username, ctx)
        return True

    # ------------------------------------------------------------------
    # Per-request check
    # ------------------------------------------------------------------

    def check_authenticated(
        self,
        ctx: AuthContext,
        on_mfa_required: Optional[Callable[[], Any]] = None,
        on_unauthenticated: Optional[Callable[[], Any]] = None,
        allow_session_continuation: bool = False,
    ) -> AuthCheck:
        """Decide whether this request is authenticated. Call once per request.

        1. A remember-me cookie matching a stored token restores an
           AUTHENTICATED session for that user and ends the check.
        2. No logged-in session: with allow_session_continuation the request
           passes anyway (verdict AUTHENTICATED, user_id None); otherwise the
           session is logged out and on_unauthenticated() is called.
        3. Logged in with MFA pending: on_mfa_required() is called and the
           session is left intact.
        4. Logged in, no MFA pending: authenticated.

        The callback's return value is carried in AuthCheck.action.
        """
        token = ctx.cookies.get(self.remember_cookie_name)
        if token:
            user = self.users.get_by_remember_token(token)
            if user is not None:
                # A remembered device restores a fully authenticated session.
                self._bind(ctx.session, user, mfa_required=False)
                return AuthCheck(AuthState.AUTHENTICATED, user_id=user.id)

        session = ctx.session
        if not session.logged_in:
            if allow_session_continuation:
                return AuthCheck(AuthState.AUTHENTICATED)
            self.logout(ctx)
            action = on_unauthenticated() if on_unauthenticated is not None else None
            return AuthCheck(AuthState.UNAUTHENTICATED, action=action)

        if session.mfa_required:
            action = on_mfa_required() if on_mfa_required is not None else None
            return AuthCheck(AuthState.PENDING_MFA, user_id=session.user_id, action=action)

        return AuthCheck(AuthState.AUTHENTICATED, user_id=session.user_id)

    def clear_mfa(self, ctx: AuthContext) -> bool:
        """Lift the MFA gate after the caller's verification step succeeded.

        Returns False if the session is not logged in.
        """
        if not ctx.session.logged_in:
            return False
        ctx.session.mfa_required = False
        ctx.session.modified = True
        return True

    def current_user(self, ctx: AuthContext) -> Optional[User]:
        """Return the User bound to the session, or None."""
        if not ctx.session.logged_in or ctx.session.user_id is None:
            return None
        return self.users.get_by_id(ctx.session.user_id)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, ctx: AuthContext) -> None:
        """Destroy the session and expire any remember-me cookie.

        The stored token matching the presented cookie is cleared as well, so
        a copy of the cookie kept elsewhere stops working. Safe to call with
        no session at all.
        """
        session = ctx.session
        user_id = session.user_id if session.logged_in else None
        session.logged_in = False
        session.user_id = None
        session.mfa_required = False
        session.destroyed = True

        token = ctx.cookies.get(self.remember_cookie_name)
        if token is not None:
            self.users.revoke_remember_token(token)
            ctx.cookie_changes.append(CookieChange(self.remember_cookie_name, expire=True))

        if user_id is not None:
            logger.info("User %s logged out", user_id)
            self._record(user_id, "logout", "succeeded", "", ctx)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _bind(session: Session, user: User, mfa_required: bool) -> None:
        # A session that gains privilege never keeps the id it was presented with.
        if session.session_id is not None:
            session.rotated_from = session.session_id
            session.session_id = None
        session.logged_in = True
        session.user_id = user.id
        session.mfa_required = mfa_required
        session.destroyed = False
        session.modified = True

    def _record(self, actor_id: Optional[int], action: str, status: str, detail: str, ctx: AuthContext) -> None:
        if self.activity is not None:
            self.activity.record(actor_id, action, status, detail, client=ctx.client)
