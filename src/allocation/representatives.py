# src/allocation/representatives.py
from __future__ import annotations

import sqlite3
from dataclasses import dataclass

from src.db import storage_errors


@dataclass(frozen=True)
class Representative:
    id: int
    name: str
    ddd: str  # area code used as phone-prefix filter
    active: bool = True

    def to_dict(self) -> dict[str, object]:
        return {"id": self.id, "name": self.name, "ddd": self.ddd, "active": self.active}


def list_active_representatives(conn: sqlite3.Connection) -> list[Representative]:
    """Active representatives in id order, which is also allocation order."""
    with storage_errors():
        rows = conn.execute(
            """
            SELECT id, name, ddd, active
            FROM representatives
            WHERE active = 1
            ORDER BY id ASC
            """
        ).fetchall()
    return [
        Representative(
            id=int(r[0]),
            name=str(r[1]),
            ddd=str(r[2]).strip(),
            active=bool(r[3]),
        )
        for r in rows
    ]
