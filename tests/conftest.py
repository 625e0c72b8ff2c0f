# tests/conftest.py
from __future__ import annotations

import sqlite3
import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

# Ensure project root importable
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.db import apply_schema, get_connection  # noqa: E402


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    """
    Fresh in-memory database with db/schema.sql applied.

    check_same_thread=False so tests may hand it to worker threads.
    API tests override this with a connection on db_file, since each
    request opens its own connection.
    """
    con = get_connection(":memory:", check_same_thread=False)
    apply_schema(con)
    try:
        yield con
    finally:
        con.close()


@pytest.fixture()
def db_file(tmp_path: Path) -> Path:
    """On-disk database with the schema applied, for CLI, API and threaded tests."""
    path = tmp_path / "registry.db"
    con = get_connection(str(path))
    try:
        apply_schema(con)
    finally:
        con.close()
    return path


def _insert_company(con: sqlite3.Connection, **fields: Any) -> int:
    row: dict[str, Any] = {
        "cnpj": "00.000.000/0001-00",
        "legal_name": "Empresa Teste",
        "phone_1": "55(11)91234-5678",
        "primary_cnae": "6821801",
        "primary_cnae_description": "Corretagem na compra e venda e avaliação de imóveis",
        "state": "SP",
    }
    row.update(fields)
    cols = ", ".join(row)
    marks = ", ".join(f":{k}" for k in row)
    cur = con.execute(f"INSERT INTO companies ({cols}) VALUES ({marks})", row)
    con.commit()
    return int(cur.lastrowid)


def _insert_rep(con: sqlite3.Connection, name: str, ddd: str, active: int = 1) -> int:
    cur = con.execute(
        "INSERT INTO representatives (name, ddd, active) VALUES (?, ?, ?)",
        (name, ddd, active),
    )
    con.commit()
    return int(cur.lastrowid)


@pytest.fixture()
def insert_company() -> Callable[..., int]:
    return _insert_company


@pytest.fixture()
def insert_rep() -> Callable[..., int]:
    return _insert_rep
