"""
store/models.py -- Result types returned by the record store.

Pattern: discriminated result. A lookup is FOUND, NOT_FOUND, or ERROR --
never a bare None or False that leaves the caller guessing whether the row is
missing or the database is down.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from store.errors import StoreError


class LookupStatus(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class Lookup:
    """Outcome of a single-row fetch.

    row is set only when status is FOUND; error only when status is ERROR.
    ERROR is produced only when the caller asked for it with
    raise_on_error=False -- by default the store raises StoreError instead.
    """

    status: LookupStatus
    row: Optional[dict[str, Any]] = None
    error: Optional[StoreError] = None

    @property
    def found(self) -> bool:
        return self.status is LookupStatus.FOUND

    def unwrap(self) -> Optional[dict[str, Any]]:
        """Return the row (or None when not found); re-raise a captured store error."""
        if self.error is not None:
            raise self.error
        return self.row


@dataclass(frozen=True)
class WriteResult:
    """Outcome of insert/update/delete. Truthy when the statement ran."""

    ok: bool
    rowcount: int = 0
    inserted_id: Optional[int] = None

    def __bool__(self) -> bool:
        return self.ok
