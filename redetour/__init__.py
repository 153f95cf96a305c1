"""Redetour payments ledger."""

__version__ = "1.0.0"
