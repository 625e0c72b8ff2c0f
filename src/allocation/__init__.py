# src/allocation/__init__.py
"""
Automatic allocation of registry companies to sales representatives.

  representatives  - read access to active representatives
  ledger           - append-only record of every company handed out
  engine           - per-representative draws fenced by the ledger
"""

from .engine import Allocation, AllocationEngine, AllocationPreview, AllocationRun
from .ledger import DistributionLedger, LedgerEntry, RepresentativeStats
from .representatives import Representative, list_active_representatives

__all__ = [
    "Allocation",
    "AllocationEngine",
    "AllocationPreview",
    "AllocationRun",
    "DistributionLedger",
    "LedgerEntry",
    "Representative",
    "RepresentativeStats",
    "list_active_representatives",
]
