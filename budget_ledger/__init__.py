"""
Budget Ledger - Source Package

A local, single-writer ledger for household budgeting: accounts and pots,
recurring bills, transfer and income schedules, and the monthly passes that
apply them.

DESIGN PRINCIPLES:
1. One writer: every change goes through the LedgerEngine
2. Fail early, fail visibly
3. No silent corrections
4. Every change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Ledger Team"
