# src/allocation/ledger.py
"""
Distribution ledger.

Append-only: rows are inserted by record()/append() and never updated or
deleted. The unique index on distributions.company_id makes "a company is
handed out at most once, to anyone" a storage-level guarantee; a violation
surfaces as LedgerConflictError instead of being swallowed.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from src.db import storage_errors, write_transaction
from src.exceptions import LedgerConflictError
from src.utils import utc_now_iso_z

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    company_id: int
    cnae: str | None


@dataclass(frozen=True)
class RepresentativeStats:
    representative_name: str
    total_distributed: int
    last_distributed_at: str | None

    def to_dict(self) -> dict[str, object]:
        return {
            "representative_name": self.representative_name,
            "total_distributed": self.total_distributed,
            "last_distributed_at": self.last_distributed_at,
        }


class DistributionLedger:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def append(
        self,
        entries: Sequence[LedgerEntry],
        representative_id: int,
        representative_name: str,
        *,
        distributed_at: str | None = None,
    ) -> int:
        """
        Insert entries without managing the transaction.

        Meant to run inside the caller's write_transaction() so the draw and
        the append commit (or roll back) together. Returns rows inserted.
        """
        if not entries:
            return 0
        ts = distributed_at or utc_now_iso_z()
        rows = [
            (e.company_id, representative_id, representative_name, e.cnae, ts) for e in entries
        ]
        try:
            self.conn.executemany(
                """
                INSERT INTO distributions
                    (company_id, representative_id, representative_name, cnae, distributed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )
        except sqlite3.IntegrityError as exc:
            raise LedgerConflictError(
                f"ledger append rejected (representative_id={representative_id}): {exc}",
                representative_id=representative_id,
            ) from exc
        return len(rows)

    def record(
        self,
        company_ids: Iterable[int],
        representative_id: int,
        representative_name: str,
        code: str | None,
        *,
        distributed_at: str | None = None,
    ) -> int:
        """
        Atomically append one row per company id, all stamped with the same
        timestamp. Either every id is recorded or none is.

        Empty input is a no-op. Duplicate ids within one call are collapsed.
        """
        ids = list(dict.fromkeys(int(cid) for cid in company_ids))
        if not ids:
            return 0
        entries = [LedgerEntry(company_id=cid, cnae=code) for cid in ids]
        with storage_errors(), write_transaction(self.conn):
            inserted = self.append(
                entries,
                representative_id,
                representative_name,
                distributed_at=distributed_at,
            )
        log.info(
            "ledger recorded %d companies for representative %s (%s)",
            inserted,
            representative_id,
            representative_name,
        )
        return inserted

    def exclusion_set(self) -> set[int]:
        """Every company id ever distributed, to any representative."""
        with storage_errors():
            rows = self.conn.execute("SELECT company_id FROM distributions").fetchall()
        return {int(r[0]) for r in rows}

    def is_distributed(self, company_id: int) -> bool:
        with storage_errors():
            row = self.conn.execute(
                "SELECT 1 FROM distributions WHERE company_id = ? LIMIT 1",
                (company_id,),
            ).fetchone()
        return row is not None

    def statistics(self) -> list[RepresentativeStats]:
        """Totals and most recent distribution time per representative name."""
        with storage_errors():
            rows = self.conn.execute(
                """
                SELECT
                    representative_name,
                    COUNT(*) AS total,
                    MAX(distributed_at) AS last_at
                FROM distributions
                GROUP BY representative_name
                ORDER BY representative_name ASC
                """
            ).fetchall()
        return [
            RepresentativeStats(
                representative_name=str(r[0]),
                total_distributed=int(r[1]),
                last_distributed_at=r[2],
            )
            for r in rows
        ]
