"""
activity/models.py -- Dataclasses for activity logging.

Layer rule: no imports from api/, web/, or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class ClientInfo:
    """Request metadata passed through to the activity log untouched.

    The HTTP layer fills this in; authentication code never inspects it.
    """

    ip: str = "UNKNOWN"
    user_agent: str = ""


@dataclass
class ActivityRecord:
    """One row of the logs table."""

    user_id: Optional[int]
    page: str
    action: str
    status: str  # "succeeded" | "failed"
    description: str
    ip: str = "UNKNOWN"
    os: str = "Unknown OS Platform"
    browser: str = "Unknown Browser"
    date_time: str = ""  # ISO 8601, set by the logger on insert
    id: Optional[int] = None
    username: Optional[str] = None  # resolved for listings only
