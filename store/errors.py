"""
store/errors.py -- Exception types raised by the record store.

StoreError is the only failure a caller has to plan for at runtime: it wraps
every SQLAlchemy error (connection refused, locked database, bad statement).
The store never retries. UnknownIdentifierError is a programming error --
a table or column name that is not part of the schema -- and subclasses
ValueError so it reads as bad input rather than an outage.
"""

from __future__ import annotations


class StoreError(Exception):
    """A connection or statement failure inside the record store."""

    def __init__(self, operation: str, table: str, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.table = table
        self.cause = cause
        message = f"{operation} on '{table}' failed"
        if cause is not None:
            message = f"{message}: {cause.__class__.__name__}"
        super().__init__(message)


class UnknownIdentifierError(ValueError):
    """A table or column name that the schema does not define."""
