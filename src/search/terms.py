# src/search/terms.py
"""
Classify a raw search string into one of three query shapes.

Priority order:

  1. multi_code   "6821-8/01, 6822-6/00"  -> every comma part is numeric (>= 2 parts)
  2. single_code  "68.21-8/01"            -> whole cleaned string is numeric
  3. free_text    "imobiliária"           -> anything else, matched on the
                                             ORIGINAL (trimmed) term

A list that mixes numeric and non-numeric parts ("6821801,abc") is neither
multi- nor single-code, so it falls through to free text as a whole; no part
is ever silently dropped. The same goes for a lone code with a trailing
comma ("6821801,").

A term that is empty once accents are folded away (a lone combining accent)
is EMPTY, like a blank one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from src.utils import fold_text

# Separators used in formatted activity codes: 6821-8/01, 68.21-8-01
_SEPARATORS_RE = re.compile(r"[-/.]")
_DIGITS_RE = re.compile(r"[0-9]+")


class TermKind(str, Enum):
    EMPTY = "empty"
    MULTI_CODE = "multi_code"
    SINGLE_CODE = "single_code"
    FREE_TEXT = "free_text"


@dataclass(frozen=True)
class SearchTerm:
    """
    Result of classify_term().

    Attributes:
        raw:     the trimmed original term (used for free-text matching).
        kind:    query shape, see TermKind.
        cleaned: raw with separators removed (used for single-code matching).
        codes:   numeric codes for multi_code (deduplicated, input order);
                 (cleaned,) for single_code; () otherwise.
    """

    raw: str
    kind: TermKind
    cleaned: str
    codes: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return self.kind is TermKind.EMPTY

    @property
    def is_code_search(self) -> bool:
        return self.kind in (TermKind.MULTI_CODE, TermKind.SINGLE_CODE)


def clean_code(value: str) -> str:
    """Strip separators and surrounding whitespace from a formatted code."""
    return _SEPARATORS_RE.sub("", value or "").strip()


def _is_numeric(value: str) -> bool:
    return bool(_DIGITS_RE.fullmatch(value))


def split_codes(cleaned: str) -> list[str]:
    """Split on commas, trim each part, drop empty parts."""
    return [part.strip() for part in cleaned.split(",") if part.strip()]


def classify_term(raw: str | None) -> SearchTerm:
    """
    Pure, deterministic classification of a user search string.

    Same input always yields an equal SearchTerm, which keeps cache keys and
    tests stable.
    """
    term = (raw or "").strip()
    # A term made only of combining marks folds to "" and would match every row.
    if not term or not fold_text(term).strip():
        return SearchTerm(raw="", kind=TermKind.EMPTY, cleaned="")

    cleaned = clean_code(term)
    parts = split_codes(cleaned)

    if len(parts) >= 2 and all(_is_numeric(p) for p in parts):
        codes = tuple(dict.fromkeys(parts))
        return SearchTerm(raw=term, kind=TermKind.MULTI_CODE, cleaned=cleaned, codes=codes)

    if _is_numeric(cleaned):
        return SearchTerm(
            raw=term,
            kind=TermKind.SINGLE_CODE,
            cleaned=cleaned,
            codes=(cleaned,),
        )

    return SearchTerm(raw=term, kind=TermKind.FREE_TEXT, cleaned=cleaned)


def normalize_codes(values: list[str] | tuple[str, ...]) -> list[str]:
    """
    Normalize an explicit list of target codes (allocation input).

    Each entry may itself be formatted or comma-joined. Raises ValueError
    if the result is empty or any code is not numeric.
    """
    out: list[str] = []
    for value in values:
        for part in split_codes(clean_code(str(value))):
            if not _is_numeric(part):
                raise ValueError(f"activity code must be numeric; got {part!r}")
            out.append(part)
    if not out:
        raise ValueError("at least one activity code is required")
    return list(dict.fromkeys(out))
