"""Bank statement reconciliation service."""

__version__ = "0.1.0"
