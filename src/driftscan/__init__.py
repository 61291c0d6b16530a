"""Drift reconciliation scanner."""

__version__ = "0.1.0"
