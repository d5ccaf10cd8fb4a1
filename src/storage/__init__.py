"""
Storage layer for accounts, subscriptions and usage records.

Uses SQLite for bootstrapping (free, embedded).
Migration path to PostgreSQL for production scale.
"""

from src.storage.database import BillingDatabase, StorageUnavailableError, get_billing_db

__all__ = ["BillingDatabase", "StorageUnavailableError", "get_billing_db"]
