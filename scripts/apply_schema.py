#!/usr/bin/env python
# scripts/apply_schema.py
"""
Create (or bring up to date) the SQLite schema in db/schema.sql.

Usage:
    python scripts/apply_schema.py                # DATABASE_URL / DATABASE_PATH / dev.db
    python scripts/apply_schema.py --db data/registry.db
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.db import SCHEMA_FILE, apply_schema, get_connection  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Apply db/schema.sql to a SQLite database.")
    ap.add_argument("--db", default=None, help="Database path (default: env / dev.db).")
    args = ap.parse_args(argv)

    if args.db:
        Path(args.db).parent.mkdir(parents=True, exist_ok=True)

    con = get_connection(args.db)
    try:
        apply_schema(con)
        tables = [
            r[0]
            for r in con.execute(
                "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
            ).fetchall()
        ]
    finally:
        con.close()

    print(f"[schema] applied {SCHEMA_FILE.name}; tables: {', '.join(tables)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
