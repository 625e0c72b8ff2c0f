# src/search/__init__.py
"""
Company registry search.

The HTTP layer and CLI should go through SearchBackend (search + count)
instead of talking to SQLite directly; terms/predicate are exposed for the
allocation engine and for tests.
"""

from .backend import (
    COMPANY_COLUMNS,
    CompanySearchParams,
    SearchBackend,
    SearchPage,
    SqliteRegistryBackend,
)
from .predicate import Predicate, build_allocation_predicate, build_predicate
from .terms import SearchTerm, TermKind, classify_term, normalize_codes

__all__ = [
    "COMPANY_COLUMNS",
    "CompanySearchParams",
    "Predicate",
    "SearchBackend",
    "SearchPage",
    "SearchTerm",
    "SqliteRegistryBackend",
    "TermKind",
    "build_allocation_predicate",
    "build_predicate",
    "classify_term",
    "normalize_codes",
]
