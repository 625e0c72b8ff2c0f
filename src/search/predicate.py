# src/search/predicate.py
"""
Build parameterized WHERE clauses over the companies table (alias ``e``).

Search pages, counts and allocation draws all go through this module, so
"which rows match" is decided in exactly one place. Every value reaches
SQLite as a named parameter; only fixed SQL text and generated placeholder
names are ever concatenated.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from src.search.terms import SearchTerm, TermKind
from src.utils import fold_text


@dataclass(frozen=True)
class Predicate:
    """
    An opaque, reusable WHERE clause.

    where_sql is a boolean SQL expression referencing ``e`` (companies);
    params holds the named parameters it needs. kind records the term
    classification so callers can reason about query cost.
    """

    where_sql: str
    params: dict[str, Any] = field(default_factory=dict)
    kind: TermKind = TermKind.FREE_TEXT


def _apply_phone_filter(
    phone_min_digits: int,
    conditions: list[str],
    sql_params: dict[str, Any],
) -> None:
    # Rows without a usable phone are never returned or counted.
    conditions.append("digit_count(e.phone_1) >= :phone_min_digits")
    sql_params["phone_min_digits"] = int(phone_min_digits)


def _apply_state_filter(
    state: str | None,
    conditions: list[str],
    sql_params: dict[str, Any],
) -> None:
    value = (state or "").strip().upper()
    if not value:
        return
    conditions.append("e.state = :state")
    sql_params["state"] = value


def _code_clause(
    codes: Sequence[str],
    include_secondary: bool,
    sql_params: dict[str, Any],
) -> str:
    """
    primary IN (...) optionally OR-ed with one substring test per code
    against the comma-joined secondary list.
    """
    placeholders: list[str] = []
    for idx, code in enumerate(codes):
        key = f"code_{idx}"
        placeholders.append(f":{key}")
        sql_params[key] = code

    if len(placeholders) == 1:
        primary = f"e.primary_cnae = {placeholders[0]}"
    else:
        primary = f"e.primary_cnae IN ({', '.join(placeholders)})"

    if not include_secondary:
        return primary

    secondary = [
        f"instr(COALESCE(e.secondary_cnae, ''), {ph}) > 0" for ph in placeholders
    ]
    return "(" + " OR ".join([primary, *secondary]) + ")"


def _apply_term_filter(
    term: SearchTerm,
    include_secondary: bool,
    conditions: list[str],
    sql_params: dict[str, Any],
) -> None:
    if term.kind is TermKind.MULTI_CODE:
        conditions.append(_code_clause(term.codes, include_secondary, sql_params))
        return

    if term.kind is TermKind.SINGLE_CODE:
        conditions.append(_code_clause([term.cleaned], include_secondary, sql_params))
        return

    # Free text: fold both sides so 'imobiliaria' matches 'Imobiliária'.
    # instr() rather than LIKE keeps '%' and '_' in the term literal.
    conditions.append("instr(fold(e.primary_cnae_description), :text) > 0")
    sql_params["text"] = fold_text(term.raw)


def build_predicate(
    term: SearchTerm,
    *,
    phone_min_digits: int,
    state: str | None = None,
    include_secondary: bool = False,
) -> Predicate:
    """
    Build the search predicate for a classified term.

    Raises ValueError for an EMPTY term; callers short-circuit those before
    reaching the database.
    """
    if term.is_empty:
        raise ValueError("cannot build a predicate for an empty search term")

    conditions: list[str] = []
    sql_params: dict[str, Any] = {}

    _apply_phone_filter(phone_min_digits, conditions, sql_params)
    _apply_term_filter(term, include_secondary, conditions, sql_params)
    _apply_state_filter(state, conditions, sql_params)

    return Predicate(
        where_sql=" AND ".join(conditions),
        params=sql_params,
        kind=term.kind,
    )


def area_prefix_pattern(ddd: str, template: str) -> str:
    """
    LIKE pattern for phones in a given area code, e.g. '55(11)%'.

    The area code must be numeric so it can never smuggle LIKE wildcards
    into the pattern.
    """
    value = (ddd or "").strip()
    if not value.isascii() or not value.isdigit():
        raise ValueError(f"area code must be numeric; got {ddd!r}")
    return template.format(ddd=value) + "%"


def build_allocation_predicate(
    codes: Sequence[str],
    *,
    ddd: str,
    phone_min_digits: int,
    area_prefix_template: str,
) -> Predicate:
    """
    Candidates for one representative:

      usable phone
      AND phone starts with the representative's area prefix
      AND (primary code IN codes OR secondary list contains any code)
      AND never distributed to anyone

    The exclusion is a NOT EXISTS against the ledger rather than a Python
    set, so it is evaluated under the caller's write transaction.
    """
    if not codes:
        raise ValueError("at least one activity code is required")

    conditions: list[str] = []
    sql_params: dict[str, Any] = {}

    _apply_phone_filter(phone_min_digits, conditions, sql_params)
    conditions.append("e.phone_1 LIKE :area_prefix")
    sql_params["area_prefix"] = area_prefix_pattern(ddd, area_prefix_template)
    conditions.append(_code_clause(list(codes), True, sql_params))
    conditions.append(
        "NOT EXISTS (SELECT 1 FROM distributions AS d WHERE d.company_id = e.id)"
    )

    return Predicate(
        where_sql=" AND ".join(conditions),
        params=sql_params,
        kind=TermKind.MULTI_CODE if len(codes) > 1 else TermKind.SINGLE_CODE,
    )
