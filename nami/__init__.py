"""
Nami - Valuation and Ledger Core

Tracks personal financial positions (cash, crypto, staked assets) and
produces valuations and performance metrics.

DESIGN PRINCIPLES:
1. Valuation never fails outright - it degrades and says so (Rate.source)
2. Ledgers are append-only; balances are always derived
3. Cost basis is traceable to the original stake
4. Every state change is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Nami Team"
