"""
Ledger Engine - Source Package

The reconciliation core of a personal finance tracker: turns raw
accounts, transactions, credit cards and recurring templates into a
consistent financial view.

DESIGN PRINCIPLES:
1. Money is Decimal, never float
2. Balances are derived, never stored
3. Recurring generation is idempotent per month
4. Settlement writes happen together or not at all
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Ledger Engine Team"
