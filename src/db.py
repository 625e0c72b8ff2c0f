# src/db.py
from __future__ import annotations

import logging
import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from src.exceptions import StorageUnavailableError
from src.utils import digit_count, fold_text

log = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]
SCHEMA_FILE = ROOT / "db" / "schema.sql"

# -------------------- basics --------------------


def _db_path() -> str:
    # Prefer DATABASE_URL if set; otherwise fall back to DATABASE_PATH; otherwise dev.db
    url = os.environ.get("DATABASE_URL")
    if url:
        if not url.startswith("sqlite:///"):
            raise RuntimeError(f"Only sqlite is supported; got {url}")
        return url.removeprefix("sqlite:///")
    path = os.environ.get("DATABASE_PATH")
    if path:
        return path
    return "dev.db"


def register_functions(con: sqlite3.Connection) -> None:
    """
    Register the SQL helpers the query layer relies on:

      fold(text)         -> accent/case-folded text (NULL stays NULL)
      digit_count(text)  -> number of ASCII digits

    Both are deterministic, so SQLite may use them in WHERE clauses freely.
    Re-registering on the same connection is harmless.
    """
    con.create_function("fold", 1, fold_text, deterministic=True)
    con.create_function("digit_count", 1, digit_count, deterministic=True)


def get_connection(
    db_path: str | None = None,
    *,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """
    Shared SQLite connection helper for the API, CLI and scripts.

    - If db_path is None, uses _db_path() (DATABASE_URL/DATABASE_PATH/dev.db).
    - Ensures foreign key enforcement.
    - Sets row_factory to sqlite3.Row for dict-like access.
    - Registers fold()/digit_count().
    """
    if db_path is None:
        db_path = _db_path()
    try:
        con = sqlite3.connect(db_path, check_same_thread=check_same_thread)
    except sqlite3.OperationalError as exc:
        raise StorageUnavailableError(f"cannot open database {db_path!r}: {exc}") from exc
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys=ON")
    register_functions(con)
    return con


def apply_schema(con: sqlite3.Connection, schema_path: Path | None = None) -> None:
    """Apply db/schema.sql. Every statement is IF NOT EXISTS, so this is idempotent."""
    path = schema_path or SCHEMA_FILE
    con.executescript(path.read_text(encoding="utf-8"))
    con.commit()


@contextmanager
def storage_errors() -> Iterator[None]:
    """
    Translate sqlite3.OperationalError (locked, unreadable, I/O) into the
    retryable StorageUnavailableError. IntegrityError and friends pass through.
    """
    try:
        yield
    except sqlite3.OperationalError as exc:
        log.warning("storage unavailable: %s", exc)
        raise StorageUnavailableError(str(exc)) from exc


@contextmanager
def write_transaction(con: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run the block inside BEGIN IMMEDIATE ... COMMIT.

    IMMEDIATE takes SQLite's write lock up front, so reads made inside the
    block (e.g. the exclusion check of an allocation draw) cannot be
    invalidated by another writer before our INSERTs land. Any exception
    rolls the whole block back.

    The connection must be idle: a transaction already open on it belongs
    to someone else and is neither committed nor absorbed here. Concurrent
    callers each need their own connection; SQLite's lock serializes them.
    """
    if con.in_transaction:
        raise RuntimeError("write_transaction() on a connection with an open transaction")
    con.execute("BEGIN IMMEDIATE")
    try:
        yield con
    except BaseException:
        con.rollback()
        raise
    else:
        con.commit()


__all__ = [
    "SCHEMA_FILE",
    "apply_schema",
    "get_connection",
    "register_functions",
    "storage_errors",
    "write_transaction",
]
