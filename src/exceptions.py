# src/exceptions.py
"""
Shared exception classes used across the codebase.

Empty search terms are deliberately not represented here: the query layer
answers them with an empty page / zero count instead of raising.
"""

from __future__ import annotations


class StorageUnavailableError(Exception):
    """
    Raised when the SQLite store cannot serve a request.

    Examples:
        - database is locked past the busy timeout
        - database file cannot be opened
        - disk I/O error

    Callers may retry; the query layer itself never does.
    """

    pass


class CountTimeoutError(Exception):
    """
    Raised when a count query runs past its deadline and is interrupted.

    Page fetches are never affected by this; only the count call fails.
    """

    pass


class LedgerConflictError(Exception):
    """
    Raised when appending to the distribution ledger hits the unique
    constraint on company_id, i.e. a company was already handed out.

    The whole batch is rolled back. Retrying with the same ids would fail
    again; the draw has to be redone against a fresh exclusion set.
    """

    def __init__(self, message: str, representative_id: int | None = None) -> None:
        super().__init__(message)
        self.representative_id = representative_id


__all__ = [
    "StorageUnavailableError",
    "CountTimeoutError",
    "LedgerConflictError",
]
