"""
api/routes/v1/activity.py -- Activity log listing.

Routes:
  GET /api/v1/activity  -- newest entries first (requires auth)

Query params:
  limit  -- 1..200, default 50
  mine   -- only the caller's own entries
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request

from activity.logger import ActivityLogger
from api.models import ActivityEntry
from auth.dependencies import require_user
from auth.models import User
from core.timefmt import time_ago

router = APIRouter()


@router.get("/activity", response_model=list[ActivityEntry])
def list_activity(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200),
    mine: bool = False,
    current_user: User = Depends(require_user),
) -> list[ActivityEntry]:
    activity: ActivityLogger = request.app.state.activity
    entries = activity.recent(limit=limit, user_id=current_user.id if mine else None)
    return [
        ActivityEntry(
            id=e.id,
            user_id=e.user_id,
            username=e.username,
            page=e.page,
            action=e.action,
            status=e.status,
            description=e.description,
            ip=e.ip,
            os=e.os,
            browser=e.browser,
            date_time=e.date_time,
            when=time_ago(datetime.fromisoformat(e.date_time)),
        )
        for e in entries
    ]
