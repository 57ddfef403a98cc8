"""Loyalty points ledger and tier engine."""

__version__ = "0.1.0"
