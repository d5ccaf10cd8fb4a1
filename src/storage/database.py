"""
Billing storage using SQLite (bootstrap) → PostgreSQL (production).

Tables:
- accounts: tenants synced from the identity provider
- subscriptions: one row per account, mutated by webhooks and checkout
- usage_records: append-only page usage, unique per (account_id, source_ref)
- applied_webhook_events: durable de-duplication of processor deliveries
- audit_log: every subscription and account mutation

Durability features:
- WAL journal for concurrent readers
- Explicit BEGIN IMMEDIATE transactions for multi-statement units
- Uniqueness constraints back every idempotency key
"""

import functools
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from src.models.account import Account
from src.models.subscription import (
    NoSubscription,
    Subscription,
    SubscriptionRecord,
    SubscriptionStatus,
)
from src.models.usage import UsageRecord
from src.utils.timestamps import now_ms

logger = logging.getLogger(__name__)


class StorageUnavailableError(Exception):
    """Storage could not be reached or was locked; the caller may retry."""

    pass


def _translate_storage_errors(func):
    """Surface operational SQLite failures as StorageUnavailableError."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error(
                "Billing storage operation failed",
                extra={"operation": func.__name__, "error": str(e)},
            )
            raise StorageUnavailableError(f"{func.__name__} failed: {e}") from e

    return wrapper


class BillingDatabase:
    """
    Billing state storage.

    The connection runs in autocommit mode; single statements are atomic on
    their own and multi-statement units use transaction().
    """

    def __init__(self, db_path: str = "./data/billing.db"):
        """
        Initialize billing database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Connection will be created lazily
        self._conn: sqlite3.Connection | None = None
        self._initialized = False
        self._transaction_depth = 0

    async def initialize(self) -> None:
        """
        Initialize database schema.

        Idempotent - safe to call multiple times.
        """
        if self._initialized:
            return

        logger.info(f"Initializing billing database at {self.db_path}")

        conn = sqlite3.connect(str(self.db_path))

        try:
            conn.execute("PRAGMA journal_mode = WAL")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    external_id TEXT NOT NULL UNIQUE,
                    email TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    account_id TEXT PRIMARY KEY,
                    external_customer_id TEXT NOT NULL,
                    external_subscription_id TEXT UNIQUE,
                    status TEXT NOT NULL,
                    plan_id TEXT NOT NULL,
                    current_period_start INTEGER,
                    current_period_end INTEGER,
                    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
                    last_applied_event_at INTEGER,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,

                    CHECK (cancel_at_period_end IN (0, 1)),
                    CHECK (
                        current_period_start IS NULL
                        OR current_period_end IS NULL
                        OR current_period_end > current_period_start
                    )
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id TEXT NOT NULL,
                    source_ref TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    cycle_start INTEGER NOT NULL,
                    cycle_end INTEGER NOT NULL,
                    recorded_at INTEGER NOT NULL,

                    UNIQUE (account_id, source_ref),
                    CHECK (amount > 0),
                    CHECK (cycle_end > cycle_start)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS applied_webhook_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    applied_at INTEGER NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp INTEGER NOT NULL,
                    account_id TEXT,
                    action TEXT NOT NULL,
                    resource_type TEXT NOT NULL,
                    resource_id TEXT,
                    details TEXT
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_subscriptions_customer "
                "ON subscriptions(external_customer_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_usage_account_cycle "
                "ON usage_records(account_id, cycle_start, cycle_end)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_account ON audit_log(account_id)")

            conn.commit()
            logger.info("Billing database initialized successfully")
            self._initialized = True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise
        finally:
            conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection (creates if needed)."""
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA busy_timeout = 5000")
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run the enclosed statements in one write transaction.

        BEGIN IMMEDIATE takes the write lock up front so read-then-write
        sequences inside cannot interleave with another writer. Nested use
        joins the outer transaction.
        """
        conn = self._get_connection()
        if self._transaction_depth > 0:
            self._transaction_depth += 1
            try:
                yield conn
            finally:
                self._transaction_depth -= 1
            return

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Could not begin transaction: {e}") from e

        self._transaction_depth = 1
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                conn.execute("ROLLBACK")
                raise StorageUnavailableError(f"Could not commit transaction: {e}") from e
        finally:
            self._transaction_depth = 0

    @_translate_storage_errors
    async def ping(self) -> bool:
        """Readiness probe."""
        conn = self._get_connection()
        conn.execute("SELECT 1").fetchone()
        return True

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @_translate_storage_errors
    async def upsert_account(self, account: Account) -> Account:
        """
        Create or refresh an account.

        created_at is written once and never overwritten: it anchors the
        rolling free-tier cycle.
        """
        conn = self._get_connection()
        now = now_ms()

        conn.execute(
            """
            INSERT INTO accounts (account_id, external_id, email, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                external_id = excluded.external_id,
                email = excluded.email,
                updated_at = excluded.updated_at
            """,
            (account.account_id, account.external_id, account.email, account.created_at, now),
        )

        await self._log_audit(
            account_id=account.account_id,
            action="UPSERT",
            resource_type="account",
            resource_id=account.account_id,
        )

        stored = await self.get_account(account.account_id)
        return stored if stored is not None else account

    @_translate_storage_errors
    async def get_account(self, account_id: str) -> Account | None:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM accounts WHERE account_id = ?", (account_id,)
        ).fetchone()

        if not row:
            return None

        return Account(
            account_id=row["account_id"],
            external_id=row["external_id"],
            email=row["email"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> SubscriptionRecord:
        return SubscriptionRecord(
            account_id=row["account_id"],
            external_customer_id=row["external_customer_id"],
            external_subscription_id=row["external_subscription_id"],
            status=SubscriptionStatus(row["status"]),
            plan_id=row["plan_id"],
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
            cancel_at_period_end=bool(row["cancel_at_period_end"]),
            last_applied_event_at=row["last_applied_event_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @_translate_storage_errors
    async def get_subscription(self, account_id: str) -> Subscription:
        """Return the account's subscription row, or NoSubscription."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM subscriptions WHERE account_id = ?", (account_id,)
        ).fetchone()

        if not row:
            return NoSubscription(account_id=account_id)
        return self._row_to_subscription(row)

    @_translate_storage_errors
    async def get_subscription_by_external_id(
        self, external_subscription_id: str
    ) -> SubscriptionRecord | None:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM subscriptions WHERE external_subscription_id = ?",
            (external_subscription_id,),
        ).fetchone()
        return self._row_to_subscription(row) if row else None

    @_translate_storage_errors
    async def get_unlinked_subscription_by_customer(
        self, external_customer_id: str
    ) -> SubscriptionRecord | None:
        """Row for a customer that has not been linked to a processor subscription yet."""
        conn = self._get_connection()
        row = conn.execute(
            """
            SELECT * FROM subscriptions
            WHERE external_customer_id = ? AND external_subscription_id IS NULL
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (external_customer_id,),
        ).fetchone()
        return self._row_to_subscription(row) if row else None

    @_translate_storage_errors
    async def save_subscription(self, record: SubscriptionRecord, action: str = "UPDATE") -> None:
        """
        Insert or overwrite the account's subscription row.

        Every field is written absolutely so a replayed write converges.
        """
        conn = self._get_connection()

        conn.execute(
            """
            INSERT INTO subscriptions (
                account_id, external_customer_id, external_subscription_id,
                status, plan_id, current_period_start, current_period_end,
                cancel_at_period_end, last_applied_event_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                external_customer_id = excluded.external_customer_id,
                external_subscription_id = excluded.external_subscription_id,
                status = excluded.status,
                plan_id = excluded.plan_id,
                current_period_start = excluded.current_period_start,
                current_period_end = excluded.current_period_end,
                cancel_at_period_end = excluded.cancel_at_period_end,
                last_applied_event_at = excluded.last_applied_event_at,
                updated_at = excluded.updated_at
            """,
            (
                record.account_id,
                record.external_customer_id,
                record.external_subscription_id,
                record.status.value,
                record.plan_id,
                record.current_period_start,
                record.current_period_end,
                1 if record.cancel_at_period_end else 0,
                record.last_applied_event_at,
                record.created_at,
                record.updated_at,
            ),
        )

        await self._log_audit(
            account_id=record.account_id,
            action=action,
            resource_type="subscription",
            resource_id=record.external_subscription_id,
            details=f"status={record.status.value} plan={record.plan_id}",
        )

    # ------------------------------------------------------------------
    # Usage records
    # ------------------------------------------------------------------

    @_translate_storage_errors
    async def get_usage_record(self, account_id: str, source_ref: str) -> UsageRecord | None:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM usage_records WHERE account_id = ? AND source_ref = ?",
            (account_id, source_ref),
        ).fetchone()

        if not row:
            return None

        return UsageRecord(
            account_id=row["account_id"],
            source_ref=row["source_ref"],
            amount=row["amount"],
            cycle_start=row["cycle_start"],
            cycle_end=row["cycle_end"],
            recorded_at=row["recorded_at"],
        )

    @_translate_storage_errors
    async def insert_usage_record(self, record: UsageRecord) -> bool:
        """
        Append a usage record.

        Returns:
            bool: False if a record for (account_id, source_ref) already exists
        """
        conn = self._get_connection()
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO usage_records (
                account_id, source_ref, amount, cycle_start, cycle_end, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.account_id,
                record.source_ref,
                record.amount,
                record.cycle_start,
                record.cycle_end,
                record.recorded_at,
            ),
        )
        return cursor.rowcount > 0

    @_translate_storage_errors
    async def sum_usage(self, account_id: str, cycle_start: int, cycle_end: int) -> int:
        """Total pages whose stored window equals [cycle_start, cycle_end) exactly."""
        conn = self._get_connection()
        row = conn.execute(
            """
            SELECT COALESCE(SUM(amount), 0) AS used
            FROM usage_records
            WHERE account_id = ? AND cycle_start = ? AND cycle_end = ?
            """,
            (account_id, cycle_start, cycle_end),
        ).fetchone()
        return int(row["used"])

    # ------------------------------------------------------------------
    # Webhook de-duplication
    # ------------------------------------------------------------------

    @_translate_storage_errors
    async def is_event_applied(self, event_id: str) -> bool:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT 1 FROM applied_webhook_events WHERE event_id = ?", (event_id,)
        ).fetchone()
        return row is not None

    @_translate_storage_errors
    async def record_applied_event(self, event_id: str, event_type: str) -> bool:
        """
        Mark an event id as applied.

        Returns:
            bool: False if the event id was already recorded
        """
        conn = self._get_connection()
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO applied_webhook_events (event_id, event_type, applied_at)
            VALUES (?, ?, ?)
            """,
            (event_id, event_type, now_ms()),
        )
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    async def _log_audit(
        self,
        action: str,
        resource_type: str,
        account_id: str | None = None,
        resource_id: str | None = None,
        details: str | None = None,
    ) -> None:
        """
        Log audit event for compliance.

        Args:
            action: Action performed (UPSERT, CHECKOUT_COMPLETED, ...)
            resource_type: Type of resource (account, subscription)
            account_id: Account the mutation applies to
            resource_id: ID of affected resource
            details: Additional details
        """
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO audit_log (
                timestamp, account_id, action, resource_type, resource_id, details
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (now_ms(), account_id, action, resource_type, resource_id, details),
        )

    @_translate_storage_errors
    async def list_audit_log(self, account_id: str) -> list[dict]:
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT * FROM audit_log WHERE account_id = ? ORDER BY id", (account_id,)
        ).fetchall()
        return [dict(row) for row in rows]

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None


# Global instance
_db: BillingDatabase | None = None


async def get_billing_db() -> BillingDatabase:
    """
    Get global billing database instance.

    Returns:
        BillingDatabase: Initialized database
    """
    global _db
    if _db is None:
        from src.config import get_settings

        _db = BillingDatabase(get_settings().billing.database_path)
        await _db.initialize()
    return _db
