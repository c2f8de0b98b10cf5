"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Category catalogue and providers
- Canonical horses/people and learned aliases
- Bills, parse results, approvals and derivative links
"""

from .sqlite_store import BillDataUpdate, DerivativeSpec, StateStore

__all__ = [
    "StateStore",
    "BillDataUpdate",
    "DerivativeSpec",
]
