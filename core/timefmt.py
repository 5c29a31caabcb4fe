"""
core/timefmt.py -- Relative time text ("3 hours ago").

Months are 30 days and years 12 such months, so the units are coarse but
stable; the count is rounded half-up.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Optional, Union

_UNITS: list[tuple[int, str]] = [
    (12 * 30 * 24 * 60 * 60, "year"),
    (30 * 24 * 60 * 60, "month"),
    (7 * 24 * 60 * 60, "week"),
    (24 * 60 * 60, "day"),
    (60 * 60, "hour"),
    (60, "minute"),
    (1, "second"),
]


def _epoch(value: Union[int, float, datetime]) -> float:
    return value.timestamp() if isinstance(value, datetime) else float(value)


def time_ago(then: Union[int, float, datetime], now: Optional[Union[int, float, datetime]] = None) -> str:
    """Describe how long ago `then` was, relative to `now` (default: current time).

    Accepts epoch seconds or aware datetimes. Future or same-second
    timestamps read "less than 1 second ago".
    """
    difference = (time.time() if now is None else _epoch(now)) - _epoch(then)
    if difference < 1:
        return "less than 1 second ago"
    for seconds, unit in _UNITS:
        amount = difference / seconds
        if amount >= 1:
            count = int(amount + 0.5)
            return f"{count} {unit}{'s' if count > 1 else ''} ago"
    return "less than 1 second ago"
