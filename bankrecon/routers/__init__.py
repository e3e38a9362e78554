"""API routers package."""

from bankrecon.routers import bank_imports, bank_transactions

__all__ = ["bank_imports", "bank_transactions"]
