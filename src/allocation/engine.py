# src/allocation/engine.py
"""
Allocation engine: hand each active representative up to N companies in
their area code, never handing the same company out twice.

Sequencing per representative, in id order:

    BEGIN IMMEDIATE
      draw candidates  (NOT EXISTS against the ledger)
      append them to the ledger
    COMMIT

The next representative's draw therefore always sees the previous one's
rows, and a concurrent run (e.g. a retried request) blocks on the write
lock instead of reading a stale exclusion set. The unique index on
distributions.company_id is the last line of defence; tripping it fails
only that representative's attempt.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from src.allocation.ledger import DistributionLedger, LedgerEntry
from src.allocation.representatives import Representative, list_active_representatives
from src.config import settings
from src.db import register_functions, storage_errors, write_transaction
from src.exceptions import LedgerConflictError
from src.search.backend import SELECT_COMPANY_COLUMNS, rows_to_dicts
from src.search.predicate import Predicate, area_prefix_pattern, build_allocation_predicate
from src.search.terms import normalize_codes
from src.utils import utc_now_iso_z

log = logging.getLogger(__name__)


@dataclass
class Allocation:
    representative: Representative
    companies: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def total(self) -> int:
        return len(self.companies)

    def to_dict(self) -> dict[str, Any]:
        return {
            "representative": self.representative.to_dict(),
            "ddd": self.representative.ddd,
            "companies": self.companies,
            "total": self.total,
            "error": self.error,
        }


@dataclass
class AllocationRun:
    exported_at: str
    codes: list[str]
    allocations: list[Allocation]

    @property
    def grand_total(self) -> int:
        return sum(a.total for a in self.allocations)

    def to_dict(self) -> dict[str, Any]:
        return {
            "exported_at": self.exported_at,
            "codes": self.codes,
            "lists": [a.to_dict() for a in self.allocations],
            "grand_total": self.grand_total,
        }


@dataclass(frozen=True)
class AllocationPreview:
    representative: Representative
    available: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "representative_id": self.representative.id,
            "representative_name": self.representative.name,
            "ddd": self.representative.ddd,
            "available": self.available,
        }


def matched_code(company: dict[str, Any], codes: Sequence[str]) -> str | None:
    """
    The target code a company was drawn under: its primary code when that
    is a target, otherwise the first target found in its secondary list.
    """
    primary = company.get("primary_cnae")
    if primary in codes:
        return str(primary)
    secondary = company.get("secondary_cnae") or ""
    for code in codes:
        if code in secondary:
            return code
    return None


class AllocationEngine:
    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        ledger: DistributionLedger | None = None,
        phone_min_digits: int | None = None,
        area_prefix_template: str | None = None,
        max_limit: int | None = None,
    ) -> None:
        self.conn = conn
        self.ledger = ledger or DistributionLedger(conn)
        self.phone_min_digits = (
            settings.PHONE_MIN_DIGITS if phone_min_digits is None else phone_min_digits
        )
        self.area_prefix_template = area_prefix_template or settings.PHONE_AREA_PREFIX
        self.max_limit = max_limit or settings.ALLOCATION_MAX_LIMIT
        register_functions(conn)

    def _validate_limit(self, limit: int) -> int:
        value = int(limit)
        if value < 1 or value > self.max_limit:
            raise ValueError(f"limit must be between 1 and {self.max_limit}")
        return value

    def _predicate(self, codes: Sequence[str], ddd: str) -> Predicate:
        return build_allocation_predicate(
            codes,
            ddd=ddd,
            phone_min_digits=self.phone_min_digits,
            area_prefix_template=self.area_prefix_template,
        )

    def draw(self, codes: Sequence[str], ddd: str, limit: int) -> list[dict[str, Any]]:
        """
        Read-only: up to `limit` undistributed candidates for an area code,
        in id order. Fewer rows than `limit` just means supply ran out.
        """
        predicate = self._predicate(codes, ddd)
        sql = f"""
            SELECT {SELECT_COMPANY_COLUMNS}
            FROM companies AS e
            WHERE {predicate.where_sql}
            ORDER BY e.id ASC
            LIMIT :draw_limit
        """
        sql_params = dict(predicate.params)
        sql_params["draw_limit"] = int(limit)
        rows = self.conn.execute(sql, sql_params).fetchall()
        return rows_to_dicts(rows)

    def available(self, codes: Sequence[str], ddd: str) -> int:
        predicate = self._predicate(codes, ddd)
        sql = f"SELECT COUNT(*) FROM companies AS e WHERE {predicate.where_sql}"
        with storage_errors():
            row = self.conn.execute(sql, predicate.params).fetchone()
        return int(row[0]) if row else 0

    def allocate_for(
        self,
        representative: Representative,
        codes: Sequence[str],
        limit: int,
        *,
        distributed_at: str | None = None,
    ) -> Allocation:
        """
        Draw and record for one representative inside a single write
        transaction. Raises LedgerConflictError if the append is rejected;
        nothing is committed in that case.
        """
        with storage_errors(), write_transaction(self.conn):
            companies = self.draw(codes, representative.ddd, limit)
            entries = [
                LedgerEntry(company_id=int(c["id"]), cnae=matched_code(c, codes))
                for c in companies
            ]
            self.ledger.append(
                entries,
                representative.id,
                representative.name,
                distributed_at=distributed_at,
            )
        return Allocation(representative=representative, companies=companies)

    def allocate(
        self,
        target_codes: Sequence[str],
        per_rep_limit: int,
        representatives: Sequence[Representative] | None = None,
    ) -> AllocationRun:
        """
        Allocate for every active representative (or the given ones), in
        order. A representative whose attempt fails gets an empty list with
        `error` set; the others are unaffected. Storage failures abort the
        run and propagate.
        """
        codes = normalize_codes(list(target_codes))
        limit = self._validate_limit(per_rep_limit)
        reps = (
            list(representatives)
            if representatives is not None
            else list_active_representatives(self.conn)
        )
        exported_at = utc_now_iso_z()

        allocations: list[Allocation] = []
        for rep in reps:
            try:
                area_prefix_pattern(rep.ddd, self.area_prefix_template)
            except ValueError as exc:
                log.error("skipping representative %s: %s", rep.id, exc)
                allocations.append(Allocation(representative=rep, error=str(exc)))
                continue

            try:
                allocation = self.allocate_for(rep, codes, limit, distributed_at=exported_at)
            except LedgerConflictError as exc:
                log.exception("allocation failed for representative %s (%s)", rep.id, rep.name)
                allocations.append(Allocation(representative=rep, error=str(exc)))
                continue

            log.info(
                "allocated %d/%d companies to representative %s (%s, ddd=%s)",
                allocation.total,
                limit,
                rep.id,
                rep.name,
                rep.ddd,
            )
            allocations.append(allocation)

        return AllocationRun(exported_at=exported_at, codes=codes, allocations=allocations)

    def preview(
        self,
        target_codes: Sequence[str],
        representatives: Sequence[Representative] | None = None,
    ) -> list[AllocationPreview]:
        """How many companies each representative could still receive."""
        codes = normalize_codes(list(target_codes))
        reps = (
            list(representatives)
            if representatives is not None
            else list_active_representatives(self.conn)
        )
        out: list[AllocationPreview] = []
        for rep in reps:
            try:
                available = self.available(codes, rep.ddd)
            except ValueError as exc:
                log.warning("no preview for representative %s: %s", rep.id, exc)
                available = 0
            out.append(AllocationPreview(representative=rep, available=available))
        return out
