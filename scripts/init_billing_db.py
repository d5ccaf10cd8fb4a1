#!/usr/bin/env python3
"""
Database initialization script for billing storage.

Creates the SQLite schema for accounts, subscriptions, usage records,
applied webhook events and the audit log, then prints the plan catalog.

Usage:
    python scripts/init_billing_db.py [--db-path PATH] [--create-demo]

Options:
    --db-path PATH    Path to SQLite database file (default: BILLING_DATABASE_PATH)
    --create-demo     Sync a demo account on the free plan

This script is idempotent - safe to run multiple times.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.billing.plan_catalog import PlanCatalog
from src.config import get_settings
from src.models.account import Account
from src.storage.database import BillingDatabase, StorageUnavailableError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

EXPECTED_TABLES = (
    "accounts",
    "subscriptions",
    "usage_records",
    "applied_webhook_events",
    "audit_log",
)


async def init_database(db_path: str) -> bool:
    """
    Initialize billing database schema.

    Args:
        db_path: Path to SQLite database file

    Returns:
        bool: True if initialization succeeded
    """
    db = BillingDatabase(db_path=db_path)
    try:
        logger.info(f"Initializing billing database at {db_path}")
        await db.initialize()

        conn = db._get_connection()
        tables = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }

        missing = set(EXPECTED_TABLES) - tables
        if missing:
            logger.error(f"Missing tables: {sorted(missing)}")
            return False

        for table in EXPECTED_TABLES:
            count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            logger.info(f"  {table}: {count} rows")

        logger.info("✓ Database initialization complete")
        return True

    except StorageUnavailableError as e:
        logger.error(f"Database initialization failed: {e}")
        return False

    finally:
        db.close()


async def create_demo_account(db_path: str) -> None:
    db = BillingDatabase(db_path=db_path)
    try:
        await db.initialize()
        account = await db.upsert_account(
            Account(
                account_id="demo-account",
                external_id="demo-subject",
                email="demo@example.com",
            )
        )
        logger.info(f"✓ Demo account synced: {account.account_id} ({account.email})")
    finally:
        db.close()


def print_plans() -> None:
    catalog = PlanCatalog.from_settings(get_settings())
    logger.info("Plan catalog:")
    for plan in catalog.plans():
        prices = ", ".join(plan.stripe_price_ids) or "-"
        logger.info(
            f"  {plan.plan_id:<8} {plan.monthly_page_limit:>6} pages/{plan.interval}"
            f"  {plan.price_cents / 100:>7.2f}  prices: {prices}"
        )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Initialize billing database schema")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to SQLite database file (default: BILLING_DATABASE_PATH)",
    )
    parser.add_argument(
        "--create-demo",
        action="store_true",
        help="Sync a demo account for local testing",
    )

    args = parser.parse_args()
    db_path = args.db_path or get_settings().billing.database_path

    if not asyncio.run(init_database(db_path)):
        logger.error("❌ Database initialization failed")
        sys.exit(1)

    if args.create_demo:
        asyncio.run(create_demo_account(db_path))

    print_plans()

    logger.info("")
    logger.info("=== Database Ready ===")
    logger.info(f"Database path: {Path(db_path).absolute()}")


if __name__ == "__main__":
    main()
