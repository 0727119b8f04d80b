"""
Debt Ledger

Amortization schedules (PRICE and SAC) and deterministic payment
reconciliation for personal debts. All monetary values are Decimal.
"""

__version__ = "1.0.0"
