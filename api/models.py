"""
API request and response models for Nevi REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are separate from the dataclasses in auth/models.py and
activity/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    password is capped at 72 characters, the most bcrypt looks at. No
    whitespace stripping here: leading/trailing spaces in a password count.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=72)
    remember: bool = False


class RecoveryRequest(BaseModel):
    """Request body for POST /api/v1/auth/recover."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    """Response for a successful POST /api/v1/auth/login."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    mfa_required: bool


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ActivityEntry(BaseModel):
    """One row of GET /api/v1/activity."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[int] = None
    username: Optional[str] = None
    page: str
    action: str
    status: str
    description: str
    ip: str
    os: str
    browser: str
    date_time: str
    when: str  # relative, e.g. "5 minutes ago"


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
