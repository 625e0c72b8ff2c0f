#!/usr/bin/env python
# scripts/seed_dev.py
"""
Seed a development database with a handful of real-estate companies in
two area codes and two representatives, so search, preview and allocate
have something to work on.

Safe to re-run: rows are keyed by CNPJ / representative name.
"""
from __future__ import annotations

import argparse
import sqlite3
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from src.db import apply_schema, get_connection  # noqa: E402

COMPANIES: list[dict[str, Any]] = [
    {
        "cnpj": "11.111.111/0001-11",
        "legal_name": "Imobiliária Paulista Ltda",
        "phone_1": "55(11)91234-5678",
        "primary_cnae": "6821801",
        "primary_cnae_description": "Corretagem na compra e venda e avaliação de imóveis",
        "city": "São Paulo",
        "state": "SP",
    },
    {
        "cnpj": "22.222.222/0001-22",
        "legal_name": "Lar Doce Lar Administração de Imóveis",
        "phone_1": "55(11)3333-4444",
        "primary_cnae": "6822600",
        "primary_cnae_description": "Gestão e administração da propriedade imobiliária",
        "city": "Campinas",
        "state": "SP",
    },
    {
        "cnpj": "33.333.333/0001-33",
        "legal_name": "Carioca Imóveis ME",
        "phone_1": "55(21)98888-7777",
        "primary_cnae": "6821801",
        "primary_cnae_description": "Corretagem na compra e venda e avaliação de imóveis",
        "city": "Rio de Janeiro",
        "state": "RJ",
    },
    {
        "cnpj": "44.444.444/0001-44",
        "legal_name": "Padaria Central",
        "phone_1": "55(11)2222-1111",
        "primary_cnae": "1091102",
        "primary_cnae_description": "Fabricação de produtos de padaria e confeitaria",
        "secondary_cnae": "4721102,6821801",
        "city": "São Paulo",
        "state": "SP",
    },
]

REPRESENTATIVES: list[tuple[str, str]] = [
    ("Ana Souza", "11"),
    ("Bruno Lima", "21"),
]


def seed_companies(conn: sqlite3.Connection) -> int:
    inserted = 0
    for c in COMPANIES:
        if conn.execute("SELECT 1 FROM companies WHERE cnpj = ?", (c["cnpj"],)).fetchone():
            continue
        cols = ", ".join(c)
        marks = ", ".join(f":{k}" for k in c)
        conn.execute(f"INSERT INTO companies ({cols}) VALUES ({marks})", c)
        inserted += 1
    return inserted


def seed_representatives(conn: sqlite3.Connection) -> int:
    inserted = 0
    for name, ddd in REPRESENTATIVES:
        if conn.execute("SELECT 1 FROM representatives WHERE name = ?", (name,)).fetchone():
            continue
        conn.execute("INSERT INTO representatives (name, ddd) VALUES (?, ?)", (name, ddd))
        inserted += 1
    return inserted


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Seed a dev database with sample rows.")
    ap.add_argument("--db", default=None, help="Database path (default: env / dev.db).")
    args = ap.parse_args(argv)

    con = get_connection(args.db)
    try:
        apply_schema(con)
        n_companies = seed_companies(con)
        n_reps = seed_representatives(con)
        con.commit()
    finally:
        con.close()

    print(f"[seed] companies +{n_companies}, representatives +{n_reps}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
