# src/export/exporter.py
"""
Spreadsheet export of company rows.

Used for two lists:

  - a page of search results (GET /companies/export, `cli export`)
  - each representative's allocation (`cli allocate --output-dir`)

Column labels follow the spreadsheets the sales team already works with.
Every text cell goes through _escape_cell so a registry value such as
"=HYPERLINK(...)" is shown as text instead of being evaluated.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Mapping
from datetime import date
from pathlib import Path
from typing import Any

from openpyxl import Workbook

from src.utils import safe_filename

SHEET_NAME = "Empresas"

# (row key, spreadsheet header)
EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("cnpj", "CNPJ"),
    ("legal_name", "Razao Social"),
    ("trade_name", "Nome Fantasia"),
    ("phone_1", "Telefone 1"),
    ("phone_2", "Telefone 2"),
    ("email", "Email"),
    ("primary_cnae", "CNAE"),
    ("primary_cnae_description", "Descricao CNAE"),
    ("address", "Endereco"),
    ("district", "Bairro"),
    ("city", "Cidade"),
    ("state", "Estado"),
    ("postal_code", "CEP"),
    ("owner_name", "Socio"),
)

EXPORT_HEADERS: list[str] = [label for _key, label in EXPORT_COLUMNS]

FORMATS = ("csv", "xlsx")


def _escape_cell(value: Any) -> Any:
    """
    Guard against Excel/Sheets "formula injection" (CSV Injection / DDE attacks).

    Prefixes any string starting with a dangerous character with a single quote.
    Dangerous characters per OWASP CSV Injection guidance:
      =  +  -  @  \t (tab)  \r (carriage return)

    Reference: https://owasp.org/www-community/attacks/CSV_Injection
    """
    if not isinstance(value, str):
        return value
    if value and value[0] in ("=", "+", "-", "@", "\t", "\r"):
        return "'" + value
    return value


def to_export_row(company: Mapping[str, Any]) -> dict[str, Any]:
    """Map a company dict to {header: escaped value} in export column order."""
    return {label: _escape_cell(company.get(key)) for key, label in EXPORT_COLUMNS}


def write_csv(out: io.TextIOBase | Any, companies: Iterable[Mapping[str, Any]]) -> int:
    """Write companies as CSV to a text stream. Returns the row count."""
    writer = csv.DictWriter(out, fieldnames=EXPORT_HEADERS)
    writer.writeheader()
    n = 0
    for company in companies:
        writer.writerow(to_export_row(company))
        n += 1
    return n


def write_xlsx(out: Path | io.BytesIO, companies: Iterable[Mapping[str, Any]]) -> int:
    """Write companies to a single-sheet workbook. Returns the row count."""
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_NAME
    ws.append(EXPORT_HEADERS)
    n = 0
    for company in companies:
        row = to_export_row(company)
        ws.append([row[h] for h in EXPORT_HEADERS])
        n += 1
    wb.save(out)
    return n


def render(companies: Iterable[Mapping[str, Any]], fmt: str) -> bytes:
    """Render companies to in-memory file contents for an HTTP download."""
    if fmt == "csv":
        buf = io.StringIO(newline="")
        write_csv(buf, companies)
        # BOM so Excel opens UTF-8 accents correctly
        return buf.getvalue().encode("utf-8-sig")
    if fmt == "xlsx":
        bio = io.BytesIO()
        write_xlsx(bio, companies)
        return bio.getvalue()
    raise ValueError(f"format must be one of: {', '.join(FORMATS)}")


def export_file(path: Path, companies: Iterable[Mapping[str, Any]], fmt: str) -> int:
    """Write companies to path in the given format. Returns the row count."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "csv":
        with path.open("w", newline="", encoding="utf-8-sig") as f:
            return write_csv(f, companies)
    if fmt == "xlsx":
        return write_xlsx(path, companies)
    raise ValueError(f"format must be one of: {', '.join(FORMATS)}")


def allocation_filename(representative_name: str, fmt: str, day: date | None = None) -> str:
    """'Ana Lúcia', 'xlsx' -> 'Ana_Lucia_2025-01-15.xlsx'."""
    d = day or date.today()
    return f"{safe_filename(representative_name)}_{d.isoformat()}.{fmt}"


CONTENT_TYPES: dict[str, str] = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
