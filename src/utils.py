# src/utils.py
"""
Shared utility functions used across the codebase.

The text helpers here are also registered as SQL functions on every
connection (see src.db.register_functions), so Python-side and SQL-side
folding always agree.
"""
from __future__ import annotations

import logging
import re
import sys
import unicodedata
from datetime import UTC, datetime
from typing import TextIO

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_UNSAFE_FILENAME_RE = re.compile(r"[^\w.-]+")


def utc_now_iso_z(dt: datetime | None = None) -> str:
    """
    Return a UTC ISO 8601 string with 'Z' suffix.

    If dt is provided, converts it to UTC first.
    If dt is None, uses current UTC time.

    Example: "2025-01-15T14:30:00Z"
    """
    d = dt or datetime.now(UTC)
    if d.tzinfo is None:
        d = d.replace(tzinfo=UTC)
    else:
        d = d.astimezone(UTC)
    return d.strftime("%Y-%m-%dT%H:%M:%SZ")


def fold_text(s: str | None) -> str | None:
    """
    Accent- and case-fold a string: 'Imobiliária' -> 'imobiliaria'.

    NULL stays NULL so SQL comparisons against missing descriptions are
    simply false.
    """
    if s is None:
        return None
    nfkd = unicodedata.normalize("NFKD", str(s))
    stripped = "".join(ch for ch in nfkd if not unicodedata.combining(ch))
    return stripped.casefold()


def digit_count(s: str | None) -> int:
    """Number of ASCII digits in s; '55(11)91234-5678' -> 13."""
    if not s:
        return 0
    return sum(1 for ch in str(s) if "0" <= ch <= "9")


def safe_filename(name: str) -> str:
    """
    Turn a free-form label (e.g. a representative's name) into a filesystem
    safe stem. Accents are dropped, runs of other characters become '_'.
    """
    folded = unicodedata.normalize("NFKD", name or "")
    ascii_only = folded.encode("ascii", "ignore").decode("ascii")
    stem = _UNSAFE_FILENAME_RE.sub("_", ascii_only).strip("._")
    return stem or "export"


def configure_logging(level: str | None = None, stream: TextIO | None = None) -> None:
    """
    Install a single stdout handler on the root logger unless the host
    process (uvicorn, pytest) already configured one.
    """
    if logging.getLogger().handlers:
        return
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=lvl, format=_LOG_FORMAT, stream=stream or sys.stdout)
