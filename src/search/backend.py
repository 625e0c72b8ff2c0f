from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from src.config import settings
from src.db import register_functions, storage_errors
from src.exceptions import CountTimeoutError
from src.search.predicate import Predicate, build_predicate
from src.search.terms import SearchTerm, classify_term

log = logging.getLogger(__name__)

T = TypeVar("T")

# Columns returned for every company row, in export/display order.
COMPANY_COLUMNS: tuple[str, ...] = (
    "id",
    "cnpj",
    "legal_name",
    "trade_name",
    "phone_1",
    "phone_2",
    "email",
    "primary_cnae",
    "primary_cnae_description",
    "secondary_cnae",
    "activity_start",
    "company_size",
    "registration_status",
    "address",
    "complement",
    "postal_code",
    "district",
    "city",
    "state",
    "owner_name",
    "owner_role",
)

SELECT_COMPANY_COLUMNS = ", ".join(f"e.{c}" for c in COMPANY_COLUMNS)

# How many SQLite VM steps between deadline checks while counting.
_PROGRESS_STEPS = 1000


@dataclass
class CompanySearchParams:
    """
    Parameters shared by search() and count().

    Attributes:
        term:
            Raw user input: one code, a comma-separated code list, or free
            text. Empty / None yields an empty page and a zero count.
        page:
            1-based page number. Only used by search().
        page_size:
            Rows per page, 1..SEARCH_MAX_PAGE_SIZE. Only used by search().
        state:
            Optional two-letter region filter; trimmed and upper-cased.
        include_secondary:
            When True, code searches also match companies whose secondary
            activity list contains the code.
    """

    term: str | None = None
    page: int = 1
    page_size: int = 50
    state: str | None = None
    include_secondary: bool = False


@dataclass
class SearchPage:
    """
    One page of search results.

    has_more is derived by fetching page_size + 1 rows; no total is
    computed here. Use SearchBackend.count() for totals.
    """

    rows: list[dict[str, Any]]
    has_more: bool
    page: int
    page_size: int


class SearchBackend(Protocol):
    """
    Interface the HTTP layer and CLI depend on.

    search() and count() are deliberately separate calls: rendering a page
    must never wait on an aggregate over a potentially large predicate.
    """

    def search(self, params: CompanySearchParams) -> SearchPage:
        ...

    def count(self, params: CompanySearchParams, *, timeout_sec: float | None = None) -> int:
        ...


def rows_to_dicts(rows: list[sqlite3.Row] | list[tuple]) -> list[dict[str, Any]]:
    return [dict(zip(COMPANY_COLUMNS, tuple(row), strict=False)) for row in rows]


def _run_with_deadline(
    conn: sqlite3.Connection,
    timeout_sec: float | None,
    fn: Callable[[], T],
) -> T:
    """
    Run fn() with a wall-clock deadline enforced by a SQLite progress
    handler. A query still running at the deadline is interrupted and
    surfaces as CountTimeoutError.
    """
    if not timeout_sec or timeout_sec <= 0:
        return fn()

    deadline = time.monotonic() + timeout_sec

    def _check() -> int:
        # Non-zero return aborts the running statement.
        return 1 if time.monotonic() > deadline else 0

    conn.set_progress_handler(_check, _PROGRESS_STEPS)
    try:
        return fn()
    except sqlite3.OperationalError as exc:
        if "interrupted" in str(exc).lower():
            raise CountTimeoutError(f"count exceeded {timeout_sec:.1f}s") from exc
        raise
    finally:
        conn.set_progress_handler(None, 0)


class SqliteRegistryBackend:
    """
    SearchBackend over the SQLite companies table.

    Search pages use offset pagination with an over-fetch of one row to
    detect further pages, ordered by primary key so page N is stable for
    an unchanged registry.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        phone_min_digits: int | None = None,
        max_page_size: int | None = None,
    ) -> None:
        self._conn = conn
        self.phone_min_digits = (
            settings.PHONE_MIN_DIGITS if phone_min_digits is None else phone_min_digits
        )
        self.max_page_size = max_page_size or settings.SEARCH_MAX_PAGE_SIZE
        register_functions(conn)

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def _validate_page(self, params: CompanySearchParams) -> None:
        if params.page < 1:
            raise ValueError("page must be >= 1")
        if params.page_size < 1 or params.page_size > self.max_page_size:
            raise ValueError(f"page_size must be between 1 and {self.max_page_size}")

    def predicate_for(self, params: CompanySearchParams) -> tuple[SearchTerm, Predicate | None]:
        """
        Classify the term and build the shared predicate. Returns
        (term, None) for empty terms.
        """
        term = classify_term(params.term)
        if term.is_empty:
            return term, None
        predicate = build_predicate(
            term,
            phone_min_digits=self.phone_min_digits,
            state=params.state,
            include_secondary=params.include_secondary,
        )
        return term, predicate

    def search(self, params: CompanySearchParams) -> SearchPage:
        self._validate_page(params)
        term, predicate = self.predicate_for(params)
        if predicate is None:
            return SearchPage(rows=[], has_more=False, page=params.page, page_size=params.page_size)

        sql = f"""
            SELECT {SELECT_COMPANY_COLUMNS}
            FROM companies AS e
            WHERE {predicate.where_sql}
            ORDER BY e.id ASC
            LIMIT :fetch_limit OFFSET :fetch_offset
        """
        sql_params = dict(predicate.params)
        sql_params["fetch_limit"] = params.page_size + 1
        sql_params["fetch_offset"] = (params.page - 1) * params.page_size

        with storage_errors():
            rows = self._conn.execute(sql, sql_params).fetchall()

        has_more = len(rows) > params.page_size
        if has_more:
            rows = rows[: params.page_size]

        log.debug(
            "search kind=%s page=%d size=%d rows=%d has_more=%s",
            term.kind.value,
            params.page,
            params.page_size,
            len(rows),
            has_more,
        )
        return SearchPage(
            rows=rows_to_dicts(rows),
            has_more=has_more,
            page=params.page,
            page_size=params.page_size,
        )

    def count(self, params: CompanySearchParams, *, timeout_sec: float | None = None) -> int:
        """
        Exact count of rows matching the same predicate search() uses.

        Free-text predicates can be slow; the deadline (default
        COUNT_TIMEOUT_SEC) bounds them without affecting search().
        """
        term, predicate = self.predicate_for(params)
        if predicate is None:
            return 0

        sql = f"SELECT COUNT(*) FROM companies AS e WHERE {predicate.where_sql}"
        timeout = settings.COUNT_TIMEOUT_SEC if timeout_sec is None else timeout_sec

        started = time.monotonic()
        with storage_errors():
            row = _run_with_deadline(
                self._conn,
                timeout,
                lambda: self._conn.execute(sql, predicate.params).fetchone(),
            )
        total = int(row[0]) if row else 0
        log.info(
            "count kind=%s total=%d duration_ms=%d",
            term.kind.value,
            total,
            int((time.monotonic() - started) * 1000),
        )
        return total
