"""
Split Ledger - Source Package

A personal finance ledger: income/expense records, monthly recurring
transactions, and peer-to-peer debts ("splits") mirrored onto the
counterparty's own ledger.

DESIGN PRINCIPLES:
1. Every record belongs to exactly one user
2. Ownership is checked, never assumed
3. Money is split in integer minor units
4. The primary ledger is authoritative; mirrors and caches are best-effort
"""

__version__ = "1.0.0"
__author__ = "Split Ledger Team"
