"""
Wallet Ledger

A custodial wallet ledger: per-user balances, peer transfers and catalog
purchases with atomic balance updates, Decimal arithmetic throughout and an
append-only entry log for every movement.
"""

__version__ = "1.0.0"
