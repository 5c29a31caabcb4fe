"""
activity/logger.py -- Persistent activity log (the logs table).

The authority and the recovery flow call record() after each login, logout
and recovery attempt. The logger owns everything beyond the
(actor, action, status, detail) tuple: the timestamp, the page label, the
human-readable description, and the client columns derived from the
ClientInfo it is handed.

Layer rule: imports from store/ only.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from activity.client import classify_browser, classify_os
from activity.models import ActivityRecord, ClientInfo
from store.records import RecordStore
from store.schema import logs, users

logger = logging.getLogger("nevi.activity")

STATUSES = ("succeeded", "failed")

# Page identifiers as used by callers -> the singular label stored in logs.page.
_PAGE_LABELS: dict[str, str] = {
    "categories": "category",
    "services": "service",
    "events": "event",
    "viewInfo": "event",
    "users": "user",
    "teams": "team",
    "worshippers": "worshipper",
    "speakers": "speaker",
}

_ACTION_VERBS: dict[str, str] = {
    "create": "Create",
    "modify": "Modify",
    "delete": "Delete",
    "view": "View",
    "login": "Log",
    "logout": "Log",
    "email": "Email",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def describe(page: str, action: str, detail: str = "") -> str:
    """Return the description column for an entry, e.g. "Log user in" or "Delete event Easter"."""
    verb = _ACTION_VERBS[action]
    if page == "login":
        return f"{verb} user in"
    if page == "logout":
        return f"{verb} user out"
    return f"{verb} {page} {detail}".strip()


class ActivityLogger:
    """Writes and lists activity log entries.

    Usage:
        activity = ActivityLogger(records)
        activity.record(user.id, "login", "succeeded", client=ClientInfo(ip="10.0.0.1"))
        entries = activity.recent(limit=20)
    """

    def __init__(self, records: RecordStore) -> None:
        self.records = records

    def record(
        self,
        actor_id: Optional[int],
        action: str,
        status: str,
        detail: str = "",
        *,
        page: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> ActivityRecord:
        """Insert one log entry and return it.

        page defaults to the action (login/logout entries are filed under
        their own page). Raises ValueError for an unknown action or status.
        """
        if action not in _ACTION_VERBS:
            raise ValueError(f"Unknown activity action {action!r}")
        if status not in STATUSES:
            raise ValueError(f"Activity status must be one of {STATUSES}, got {status!r}")
        client = client or ClientInfo()
        label = _PAGE_LABELS.get(page or action, page or action)
        entry = ActivityRecord(
            user_id=actor_id,
            page=label,
            action=action,
            status=status,
            description=describe(label, action, detail),
            ip=client.ip,
            os=classify_os(client.user_agent),
            browser=classify_browser(client.user_agent),
            date_time=_now_iso(),
        )
        result = self.records.insert(
            logs,
            ["dateTime", "userID", "userIP", "userOS", "userBrowser", "page", "actionType", "activityStatus", "description"],
            [
                entry.date_time,
                entry.user_id,
                entry.ip,
                entry.os,
                entry.browser,
                entry.page,
                entry.action,
                entry.status,
                entry.description,
            ],
        )
        entry.id = result.inserted_id
        logger.info("%s %s %s (user=%s ip=%s)", label, action, status, actor_id, client.ip)
        return entry

    def recent(self, limit: int = 50, user_id: Optional[int] = None) -> list[ActivityRecord]:
        """Return the newest entries first, with actor usernames resolved."""
        where = logs.c.userID == user_id if user_id is not None else None
        rows = self.records.fetch_all(logs, "*", where, order_by=[logs.c.id.desc()], limit=limit)
        actor_ids = {r["userID"] for r in rows if r["userID"] is not None}
        names: dict = {}
        if actor_ids:
            names = self.records.fetch_keyed(users, ["id", "username"], users.c.id.in_(actor_ids), "id", "username")
        return [_row_to_record(r, names.get(r["userID"])) for r in rows]


def _row_to_record(row: dict, username: Optional[str]) -> ActivityRecord:
    return ActivityRecord(
        id=row["id"],
        user_id=row["userID"],
        page=row["page"],
        action=row["actionType"],
        status=row["activityStatus"],
        description=row["description"],
        ip=row["userIP"],
        os=row["userOS"],
        browser=row["userBrowser"],
        date_time=row["dateTime"],
        username=username,
    )
