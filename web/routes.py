"""
web/routes.py -- Browser-facing routes for Nevi.

These routes answer with redirects instead of JSON errors. They share
app.state with the API routes (same record store, same authority) and the
same per-request AuthContext built by the session middleware.

The redirect targets come from Settings (LOGIN_URL, MFA_URL) and are handed
to the authority as callbacks; the authority itself knows no routes.

Routes:
  GET       /        -- signed-in landing page (auth required)
  GET/POST  /logout  -- end the session, redirect to LOGIN_URL
"""

import html
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from auth.dependencies import get_auth_context, get_authority
from core.config import get_settings

logger = logging.getLogger("nevi.web")

router = APIRouter()


def _require_auth(request: Request) -> Optional[RedirectResponse]:
    """Run the per-request auth check. Returns a redirect, or None if authenticated.

    Call at the top of protected route handlers:
        if redirect := _require_auth(request):
            return redirect

    Unauthenticated requests go to LOGIN_URL?next=<path> (path only, so the
    login page can never be turned into an open redirect); MFA-pending
    sessions go to MFA_URL with the session kept.
    """
    settings = get_settings()
    path = request.url.path
    check = get_authority(request).check_authenticated(
        get_auth_context(request),
        on_mfa_required=lambda: RedirectResponse(settings.mfa_url, status_code=302),
        on_unauthenticated=lambda: RedirectResponse(f"{settings.login_url}?next={quote(path)}", status_code=302),
    )
    return check.action


@router.get("/", response_class=HTMLResponse)
def home(request: Request):
    if redirect := _require_auth(request):
        return redirect
    authority = get_authority(request)
    ctx = get_auth_context(request)
    user = authority.current_user(ctx)
    if user is None:
        authority.logout(ctx)
        return RedirectResponse(get_settings().login_url, status_code=302)
    name = f"{user.first_name or ''} {user.last_name or ''}".strip() or user.username
    return HTMLResponse(f"<p>Signed in as {html.escape(name)}.</p>")


@router.api_route("/logout", methods=["GET", "POST"])
def logout(request: Request) -> RedirectResponse:
    """Clear the session and remember-me cookie, then go to the login page."""
    get_authority(request).logout(get_auth_context(request))
    return RedirectResponse(get_settings().login_url, status_code=302)
