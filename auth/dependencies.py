"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session middleware in api/main.py builds one AuthContext per request and
parks it on request.state; these helpers hand it to route handlers and run
the per-request authentication check against it.

require_user() is the hard variant: HTTP 401 when unauthenticated, HTTP 403
when the MFA gate is still closed. Both are raised from the callbacks passed
to check_authenticated(), so the session is logged out (401 case) or left
intact (403 case) exactly as the authority decides.

Layer rule: no imports from web/. This module may import from fastapi
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, Request

from activity.client import client_ip
from activity.models import ClientInfo
from auth.authority import SessionAuthority
from auth.models import AuthContext, Session, User


def build_auth_context(request: Request, session: Session) -> AuthContext:
    """Assemble the AuthContext for a request from its cookies and headers."""
    remote = request.client.host if request.client else None
    return AuthContext(
        session=session,
        cookies=dict(request.cookies),
        client=ClientInfo(
            ip=client_ip(request.headers, remote),
            user_agent=request.headers.get("user-agent", ""),
        ),
    )


def get_auth_context(request: Request) -> AuthContext:
    """Return the AuthContext the session middleware attached to this request."""
    return request.state.auth_context


def get_authority(request: Request) -> SessionAuthority:
    return request.app.state.authority


def _unauthorized() -> NoReturn:
    raise HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Authentication required."},
    )


def _mfa_required() -> NoReturn:
    raise HTTPException(
        status_code=403,
        detail={"code": "mfa_required", "message": "Multi-factor verification required."},
    )


def require_user(request: Request) -> User:
    """Require a fully authenticated session. Raises HTTP 401 / 403.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(require_user)): ...
    """
    authority = get_authority(request)
    ctx = get_auth_context(request)
    authority.check_authenticated(ctx, on_mfa_required=_mfa_required, on_unauthenticated=_unauthorized)
    user = authority.current_user(ctx)
    if user is None:
        # The session points at a user row that no longer exists.
        authority.logout(ctx)
        _unauthorized()
    return user
