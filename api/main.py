"""
api/main.py -- FastAPI application entry point for Nevi.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- method, path, status, latency per request
  4. session_middleware    -- loads the server-side session, builds the
                              AuthContext, persists both on the way out

Lifespan opens the record store and wires every service onto app.state at
startup, and disposes the engine at shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse, Response

from activity.logger import ActivityLogger
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.activity import router as activity_router
from api.routes.v1.auth import router as auth_router
from auth.authority import SessionAuthority
from auth.dependencies import build_auth_context, require_user
from auth.models import AuthContext, User
from auth.recovery import Mailer, PasswordRecovery, SmtpMailer
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import Settings, get_settings
from store.errors import StoreError
from store.records import RecordStore

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("nevi.api")

settings: Settings = get_settings()


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(app: FastAPI, records: RecordStore, mailer: Optional[Mailer] = None) -> None:
    """Build every service on top of one RecordStore and attach it to app.state.

    Shared by the real lifespan and the test lifespan so both wire the
    application identically. Without a mailer, password recovery is disabled
    (app.state.recovery is None).
    """
    app.state.records = records
    app.state.user_store = UserStore(records)
    app.state.session_store = SessionStore(records)
    app.state.activity = ActivityLogger(records)
    app.state.authority = SessionAuthority(
        app.state.user_store,
        app.state.activity,
        remember_cookie_name=settings.remember_cookie_name,
        remember_cookie_max_age=settings.remember_cookie_max_age,
    )
    app.state.recovery = (
        PasswordRecovery(app.state.user_store, mailer, app.state.activity) if mailer is not None else None
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the record store on startup and dispose of it on shutdown."""
    logger.info("Nevi API starting up")
    records = RecordStore(settings.database_url)
    mailer = SmtpMailer(settings) if settings.smtp_host else None
    wire_services(app, records, mailer)
    logger.info("Record store initialized (recovery mail %s)", "enabled" if mailer else "disabled")

    yield

    records.close()
    logger.info("Nevi API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Nevi API",
    description="Session authentication, remember-me login and activity logging.",
    version=_VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)


# ---------------------------------------------------------------------------
# Session middleware
# ---------------------------------------------------------------------------


def _apply_cookies(request: Request, ctx: AuthContext, response: Response) -> None:
    """Write the session cookie and any cookie changes the authority queued.

    Blocking (session table I/O): the middleware runs it in the threadpool.
    """
    store: SessionStore = request.app.state.session_store
    session = ctx.session
    cookie_name = settings.session_cookie_name
    if session.rotated_from is not None:
        store.destroy(session.rotated_from)
        session.rotated_from = None
    if session.destroyed and not session.logged_in:
        store.destroy(session.session_id)
        if cookie_name in request.cookies:
            response.delete_cookie(cookie_name)
    elif session.modified:
        session_id = store.save(session)
        response.set_cookie(
            cookie_name,
            value=session_id,
            httponly=True,
            samesite="lax",
            secure=settings.secure_cookies,
        )
    for change in ctx.cookie_changes:
        if change.expire:
            response.delete_cookie(change.name)
        else:
            response.set_cookie(
                change.name,
                value=change.value,
                max_age=change.max_age,
                httponly=True,
                samesite="lax",
                secure=settings.secure_cookies,
            )


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    """Restore the session from its cookie, run the request, persist the result.

    The AuthContext is parked on request.state so dependencies and web routes
    share one instance; whatever the authority changed on it -- session
    fields, remember-me cookie -- is written once the response exists,
    including 401/403 responses raised from dependencies.

    Session reads and writes run in the threadpool so a slow record store
    holds up only the request that is waiting on it.
    """
    store: SessionStore = request.app.state.session_store
    session = await run_in_threadpool(store.load, request.cookies.get(settings.session_cookie_name))
    ctx = build_auth_context(request, session)
    request.state.auth_context = ctx
    response = await call_next(request)
    await run_in_threadpool(_apply_cookies, request, ctx, response)
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Outer middleware
#
# Each add_middleware() / @app.middleware registration wraps everything
# registered before it, so the last one added is outermost. Registering
# session_middleware first and TrustedHost last gives the order listed in
# the module docstring.
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(activity_router, prefix="/api/v1", tags=["Activity"])
# Web router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(require_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Nevi API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(require_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="Nevi API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves through _error() so API clients get one envelope:
# {"error": {"code", "message", "detail"}}.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _store_error_response(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Record store failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return _error(
        500,
        "store_error",
        "The record store is unavailable; the request was aborted.",
        f"{exc.operation} on {exc.table}",
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Database errors abort the request: there is nothing to fall back to."""
    return _store_error_response(request, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 for a malformed body or out-of-range query parameter."""
    fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
    return _error(422, "validation_error", "Request validation failed.", fields or None)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Pass structured details (dicts with code/message) through unchanged."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort for anything a route or middleware let escape.

    Store failures raised before routing (e.g. while the session middleware
    loads the session) arrive here and still get the store_error envelope.
    The exception text goes to the log only.
    """
    if isinstance(exc, StoreError):
        return _store_error_response(request, exc)
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and record store reachability."""
    database_ok = request.app.state.records.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=_VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
