"""
Trip Settlement Engine

Splits shared trip costs among members, tracks which shares have been paid
and derives per-member balances and settlement status.
"""

__version__ = "1.0.0"
