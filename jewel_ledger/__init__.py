"""
Jewel Ledger

Back-office ledger engine for a jewelry shop: pawn-style gold loans with
simple monthly interest, recurring gold-savings schemes, and redemption of
matured schemes against a purchase. All money math uses Decimal.
"""

__version__ = "1.0.0"
