"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login    -- password login; sets session (and remember-me) cookies
  POST /api/v1/auth/logout   -- destroys the session, expires the remember-me cookie
  GET  /api/v1/auth/me       -- current user info (requires auth, MFA cleared)
  POST /api/v1/auth/recover  -- start password recovery; always 202

Security:
  Wrong username and wrong password produce the same "bad_credentials" 401,
  and the authority runs bcrypt in both cases, so neither the body nor the
  timing reveals whether a username exists. /recover answers 202 whether or
  not the account exists for the same reason.
  Cache-Control: no-store on login responses.

Session and cookie writes are not done here: the authority records them on
the request's AuthContext and the session middleware applies them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from api.models import LoginRequest, LoginResponse, MeResponse, MessageResponse, RecoveryRequest
from auth.dependencies import get_auth_context, get_authority, require_user
from auth.models import AuthContext, User
from auth.recovery import PasswordRecovery
from auth.store import UserStore

# Auth policy:
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:   public -- clearing a session needs no prior auth
# - POST /api/v1/auth/recover:  public -- the user has lost their password
# - GET  /api/v1/auth/me:       requires auth (require_user)
router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest, ctx: AuthContext = Depends(get_auth_context)) -> JSONResponse:
    """Authenticate with username and password.

    On success the session is bound to the user. When the account requires
    MFA the response says so and protected routes answer 403 until the
    verification step clears the gate.
    """
    authority = get_authority(request)
    if not authority.login(ctx, body.username.strip(), body.password, remember=body.remember):
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user = authority.current_user(ctx)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user_id=user.id,
            username=user.username,
            mfa_required=ctx.session.mfa_required,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, ctx: AuthContext = Depends(get_auth_context)) -> MessageResponse:
    """End the session. Idempotent: logging out twice is not an error."""
    get_authority(request).logout(ctx)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(require_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        first_name=current_user.first_name,
        last_name=current_user.last_name,
    )


@router.post("/auth/recover", response_model=MessageResponse, status_code=202)
async def recover(
    request: Request,
    body: RecoveryRequest,
    ctx: AuthContext = Depends(get_auth_context),
) -> MessageResponse:
    """Send a password recovery message if the account exists.

    Returns 503 only when recovery mail is not configured at all.
    """
    recovery: PasswordRecovery | None = request.app.state.recovery
    if recovery is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "recovery_unavailable", "message": "Password recovery is not configured."},
        )
    user_store: UserStore = request.app.state.user_store
    user = await run_in_threadpool(user_store.get_by_username, body.username)
    if user is not None:
        await recovery.initiate(user.id, client=ctx.client)
    return MessageResponse(message="If the account exists, a recovery message has been sent.")
