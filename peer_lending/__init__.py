"""
Peer Lending Core

Amortization, payment allocation and investor reinvestment for a
peer-to-peer lending marketplace. All money math uses Decimal with
day-based compounding.
"""

__version__ = "1.0.0"
