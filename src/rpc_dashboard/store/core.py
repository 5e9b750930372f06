"""Core AsyncStore class for database operations."""

from __future__ import annotations

import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from typing import Any

import aiosqlite

from ..logging_config import get_logger
from .schema import SCHEMA

logger = get_logger(__name__)

# Columns callers may change through the generic update helpers
_API_KEY_UPDATABLE = {"name", "rate_limit", "daily_limit", "monthly_limit", "active"}
_SUBSCRIPTION_UPDATABLE = {
    "stripe_subscription_id",
    "plan",
    "status",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _assignments(fields: dict[str, Any], allowed: set[str]) -> tuple[str, list[Any]]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
    columns = ", ".join(f"{name} = ?" for name in fields)
    return columns, list(fields.values())


class AsyncStore:
    """Async SQLite storage for users, API keys, usage and billing."""

    def __init__(self, db_path: str):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA foreign_keys = ON")
        logger.info("database_connected", path=self.db_path)

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for database connection."""
        if not self._connection:
            await self.connect()
        yield self._connection

    async def init_db(self) -> None:
        """Initialize database schema."""
        async with self.connection() as conn:
            await conn.executescript(SCHEMA)
            await conn.commit()
        logger.info("database_initialized")

    async def ping(self) -> bool:
        """Run a trivial query to check the database is reachable."""
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1")
            row = await cursor.fetchone()
        return row is not None and row[0] == 1

    async def _fetch_one(self, query: str, params: tuple = ()) -> dict | None:
        async with self.connection() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def _fetch_all(self, query: str, params: tuple = ()) -> list[dict]:
        async with self.connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _execute(self, query: str, params: tuple | list = ()) -> int:
        """Execute a write and return the number of affected rows."""
        async with self.connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
        return cursor.rowcount

    # --- Users ---

    async def get_user(self, user_id: str) -> dict | None:
        return await self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))

    async def get_user_by_privy_id(self, privy_id: str) -> dict | None:
        return await self._fetch_one("SELECT * FROM users WHERE privy_id = ?", (privy_id,))

    async def get_user_by_email(self, email: str) -> dict | None:
        return await self._fetch_one("SELECT * FROM users WHERE LOWER(email) = LOWER(?)", (email,))

    async def create_user(
        self,
        privy_id: str,
        email: str | None = None,
        name: str | None = None,
        password_hash: str | None = None,
        wallet_address: str | None = None,
        wallet_type: str | None = None,
    ) -> dict:
        """Insert a new user.

        Returns:
            The created user row
        """
        user_id = _new_id()
        now = _now()
        await self._execute(
            """
            INSERT INTO users
            (id, privy_id, email, password_hash, wallet_address, wallet_type, name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, privy_id, email, password_hash, wallet_address, wallet_type, name, now, now),
        )
        logger.info("user_created", user_id=user_id, privy_id=privy_id)
        return await self.get_user(user_id)

    async def upsert_privy_user(
        self,
        privy_id: str,
        email: str | None = None,
        wallet_address: str | None = None,
        wallet_type: str | None = None,
        name: str | None = None,
    ) -> dict:
        """Create or refresh a user keyed by Privy ID.

        Missing values never overwrite what is already stored.
        An email already owned by another account is not copied over.
        """
        if email:
            owner = await self.get_user_by_email(email)
            if owner and owner["privy_id"] != privy_id:
                logger.warning("email_owned_by_other_user", privy_id=privy_id, owner_id=owner["id"])
                email = None
        now = _now()
        await self._execute(
            """
            INSERT INTO users (id, privy_id, email, wallet_address, wallet_type, name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(privy_id) DO UPDATE SET
                email = COALESCE(excluded.email, users.email),
                wallet_address = COALESCE(excluded.wallet_address, users.wallet_address),
                wallet_type = COALESCE(excluded.wallet_type, users.wallet_type),
                name = COALESCE(excluded.name, users.name),
                updated_at = excluded.updated_at
            """,
            (_new_id(), privy_id, email, wallet_address, wallet_type, name, now, now),
        )
        return await self.get_user_by_privy_id(privy_id)

    async def ensure_user(self, privy_id: str) -> dict:
        """Return the user for a Privy ID, creating a bare record on first sight."""
        user = await self.get_user_by_privy_id(privy_id)
        if user:
            return user
        return await self.upsert_privy_user(privy_id)

    async def update_user_name(self, user_id: str, name: str | None) -> dict | None:
        await self._execute(
            "UPDATE users SET name = ?, updated_at = ? WHERE id = ?",
            (name, _now(), user_id),
        )
        return await self.get_user(user_id)

    # --- User Settings ---

    async def get_user_settings(self, user_id: str) -> dict | None:
        row = await self._fetch_one("SELECT settings FROM user_settings WHERE user_id = ?", (user_id,))
        return json.loads(row["settings"]) if row else None

    async def save_user_settings(self, user_id: str, settings: dict) -> None:
        await self._execute(
            """
            INSERT INTO user_settings (user_id, settings, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET settings = excluded.settings, updated_at = excluded.updated_at
            """,
            (user_id, json.dumps(settings), _now()),
        )

    # --- API Keys ---

    async def create_api_key(
        self,
        user_id: str,
        name: str,
        key_hash: str,
        prefix: str,
        rate_limit: int = 10,
        daily_limit: int = 10000,
        monthly_limit: int = 100000,
        expires_at: datetime | None = None,
    ) -> dict:
        """Insert a new API key record (hash only).

        Returns:
            The created key row
        """
        key_id = _new_id()
        await self._execute(
            """
            INSERT INTO api_keys
            (id, user_id, name, key_hash, prefix, active, rate_limit, daily_limit,
             monthly_limit, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?, ?, ?)
            """,
            (
                key_id,
                user_id,
                name,
                key_hash,
                prefix,
                rate_limit,
                daily_limit,
                monthly_limit,
                _now(),
                expires_at.isoformat() if expires_at else None,
            ),
        )
        return await self.get_api_key(key_id)

    async def get_api_key(self, key_id: str) -> dict | None:
        return await self._fetch_one("SELECT * FROM api_keys WHERE id = ?", (key_id,))

    async def get_api_key_by_hash(self, key_hash: str) -> dict | None:
        return await self._fetch_one("SELECT * FROM api_keys WHERE key_hash = ?", (key_hash,))

    async def list_api_keys(self, user_id: str, active_only: bool = False) -> list[dict]:
        """List a user's keys, newest first."""
        query = "SELECT * FROM api_keys WHERE user_id = ?"
        if active_only:
            query += " AND active = 1"
        query += " ORDER BY created_at DESC"
        return await self._fetch_all(query, (user_id,))

    async def touch_api_key(self, key_id: str) -> None:
        await self._execute("UPDATE api_keys SET last_used_at = ? WHERE id = ?", (_now(), key_id))

    async def update_api_key(self, user_id: str, key_id: str, **fields: Any) -> bool:
        """Update a key owned by ``user_id``.

        Returns:
            True if a key was updated
        """
        fields = {k: v for k, v in fields.items() if v is not None}
        if not fields:
            row = await self._fetch_one(
                "SELECT id FROM api_keys WHERE id = ? AND user_id = ?", (key_id, user_id)
            )
            return row is not None
        columns, values = _assignments(fields, _API_KEY_UPDATABLE)
        count = await self._execute(
            f"UPDATE api_keys SET {columns} WHERE id = ? AND user_id = ?",
            [*values, key_id, user_id],
        )
        return count > 0

    async def deactivate_api_key(self, key_id: str) -> None:
        await self._execute("UPDATE api_keys SET active = 0 WHERE id = ?", (key_id,))

    async def delete_api_key(self, user_id: str, key_id: str) -> bool:
        count = await self._execute("DELETE FROM api_keys WHERE id = ? AND user_id = ?", (key_id, user_id))
        return count > 0

    # --- Usage ---

    async def record_usage(
        self,
        user_id: str,
        api_key_id: str | None,
        method: str,
        success: bool,
        latency_ms: int,
        bytes_in: int = 0,
        bytes_out: int = 0,
        endpoint: str | None = None,
        when: datetime | None = None,
    ) -> None:
        """Add one request to the daily usage and per-method counters."""
        when = when or datetime.now(UTC)
        day = when.date().isoformat()
        ok = 1 if success else 0
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO usage
                (user_id, api_key_id, date, requests, success_count, error_count, bytes_in, bytes_out)
                VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                ON CONFLICT(user_id, api_key_id, date) DO UPDATE SET
                    requests = requests + 1,
                    success_count = success_count + excluded.success_count,
                    error_count = error_count + excluded.error_count,
                    bytes_in = bytes_in + excluded.bytes_in,
                    bytes_out = bytes_out + excluded.bytes_out
                """,
                (user_id, api_key_id or "", day, ok, 1 - ok, bytes_in, bytes_out),
            )
            await conn.execute(
                """
                INSERT INTO method_stats
                (user_id, date, hour, method, endpoint, requests, errors, total_latency_ms)
                VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(user_id, date, hour, method, endpoint) DO UPDATE SET
                    requests = requests + 1,
                    errors = errors + excluded.errors,
                    total_latency_ms = total_latency_ms + excluded.total_latency_ms
                """,
                (user_id, day, when.hour, method, endpoint or "", 1 - ok, latency_ms),
            )
            await conn.commit()

    async def sum_requests(self, user_id: str, since: date, api_key_id: str | None = None) -> int:
        """Total requests since a date (inclusive), optionally for a single key."""
        query = "SELECT COALESCE(SUM(requests), 0) AS total FROM usage WHERE user_id = ? AND date >= ?"
        params: list[Any] = [user_id, since.isoformat()]
        if api_key_id is not None:
            query += " AND api_key_id = ?"
            params.append(api_key_id)
        row = await self._fetch_one(query, tuple(params))
        return int(row["total"])

    async def usage_totals(self, user_id: str, since: date) -> dict:
        """Summed usage counters since a date (inclusive)."""
        row = await self._fetch_one(
            """
            SELECT
                COALESCE(SUM(requests), 0) AS requests,
                COALESCE(SUM(success_count), 0) AS success_count,
                COALESCE(SUM(error_count), 0) AS error_count,
                COALESCE(SUM(bytes_in), 0) AS bytes_in,
                COALESCE(SUM(bytes_out), 0) AS bytes_out
            FROM usage WHERE user_id = ? AND date >= ?
            """,
            (user_id, since.isoformat()),
        )
        return row

    async def method_counts(self, user_id: str, since: date) -> dict[str, int]:
        rows = await self._fetch_all(
            """
            SELECT method, SUM(requests) AS count FROM method_stats
            WHERE user_id = ? AND date >= ?
            GROUP BY method
            """,
            (user_id, since.isoformat()),
        )
        return {row["method"]: int(row["count"]) for row in rows}

    async def endpoint_performance(self, user_id: str, since: date) -> list[dict]:
        return await self._fetch_all(
            """
            SELECT endpoint,
                   SUM(requests) AS requests,
                   SUM(errors) AS errors,
                   SUM(total_latency_ms) AS total_latency_ms
            FROM method_stats
            WHERE user_id = ? AND date >= ? AND endpoint != ''
            GROUP BY endpoint
            ORDER BY requests DESC
            """,
            (user_id, since.isoformat()),
        )

    async def usage_timeline(self, user_id: str, since: date, hourly: bool = True) -> list[dict]:
        """Request, error and latency totals grouped by hour (or by day)."""
        bucket = "date, hour" if hourly else "date"
        return await self._fetch_all(
            f"""
            SELECT {bucket},
                   SUM(requests) AS requests,
                   SUM(errors) AS errors,
                   SUM(total_latency_ms) AS total_latency_ms
            FROM method_stats
            WHERE user_id = ? AND date >= ?
            GROUP BY {bucket}
            ORDER BY {bucket}
            """,
            (user_id, since.isoformat()),
        )

    # --- Subscriptions ---

    async def get_subscription(self, user_id: str) -> dict | None:
        return await self._fetch_one("SELECT * FROM subscriptions WHERE user_id = ?", (user_id,))

    async def get_subscription_by_customer(self, stripe_customer_id: str) -> dict | None:
        return await self._fetch_one(
            "SELECT * FROM subscriptions WHERE stripe_customer_id = ?", (stripe_customer_id,)
        )

    async def upsert_subscription(
        self,
        user_id: str,
        stripe_customer_id: str,
        plan: str = "FREE",
        status: str = "inactive",
    ) -> dict:
        """Create the user's subscription row, or attach a new Stripe customer to it."""
        now = _now()
        await self._execute(
            """
            INSERT INTO subscriptions (id, user_id, stripe_customer_id, plan, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                stripe_customer_id = excluded.stripe_customer_id,
                updated_at = excluded.updated_at
            """,
            (_new_id(), user_id, stripe_customer_id, plan, status, now, now),
        )
        return await self.get_subscription(user_id)

    async def update_subscription_by_customer(self, customer_id: str, /, **fields: Any) -> bool:
        columns, values = _assignments(fields, _SUBSCRIPTION_UPDATABLE)
        count = await self._execute(
            f"UPDATE subscriptions SET {columns}, updated_at = ? WHERE stripe_customer_id = ?",
            [*values, _now(), customer_id],
        )
        return count > 0

    async def update_subscription_by_stripe_id(self, subscription_id: str, /, **fields: Any) -> bool:
        """Update the row for a Stripe subscription. ``fields`` may clear ``stripe_subscription_id`` itself."""
        columns, values = _assignments(fields, _SUBSCRIPTION_UPDATABLE)
        count = await self._execute(
            f"UPDATE subscriptions SET {columns}, updated_at = ? WHERE stripe_subscription_id = ?",
            [*values, _now(), subscription_id],
        )
        return count > 0

    # --- Invoices ---

    async def save_invoice(
        self,
        stripe_invoice_id: str,
        amount: int,
        currency: str,
        status: str,
        user_id: str | None = None,
        paid_at: datetime | None = None,
    ) -> None:
        """Insert an invoice, or update its status when Stripe re-delivers the event."""
        await self._execute(
            """
            INSERT INTO invoices (id, user_id, stripe_invoice_id, amount, currency, status, paid_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(stripe_invoice_id) DO UPDATE SET
                status = excluded.status,
                amount = excluded.amount,
                paid_at = COALESCE(excluded.paid_at, invoices.paid_at)
            """,
            (
                _new_id(),
                user_id,
                stripe_invoice_id,
                amount,
                currency,
                status,
                paid_at.isoformat() if paid_at else None,
                _now(),
            ),
        )
        logger.info("invoice_saved", stripe_invoice_id=stripe_invoice_id, status=status)

    async def list_invoices(self, user_id: str, limit: int = 24) -> list[dict]:
        return await self._fetch_all(
            "SELECT * FROM invoices WHERE user_id = ? ORDER BY created_at DESC LIMIT ?",
            (user_id, limit),
        )

    # --- Custom Endpoints ---

    async def add_custom_endpoint(
        self,
        user_id: str,
        url: str,
        name: str,
        region: str,
        healthy: bool,
        latency_ms: int,
    ) -> dict:
        endpoint_id = _new_id()
        await self._execute(
            """
            INSERT INTO custom_endpoints (id, user_id, url, name, region, healthy, latency_ms, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (endpoint_id, user_id, url, name, region, 1 if healthy else 0, latency_ms, _now()),
        )
        return await self._fetch_one("SELECT * FROM custom_endpoints WHERE id = ?", (endpoint_id,))

    async def list_custom_endpoints(self, user_id: str) -> list[dict]:
        return await self._fetch_all(
            "SELECT * FROM custom_endpoints WHERE user_id = ? ORDER BY created_at",
            (user_id,),
        )

    async def delete_custom_endpoint(self, user_id: str, endpoint_id: str) -> bool:
        count = await self._execute(
            "DELETE FROM custom_endpoints WHERE id = ? AND user_id = ?",
            (endpoint_id, user_id),
        )
        return count > 0

    # --- Endpoint Alerts ---

    async def add_endpoint_alert(self, alert_type: str, message: str, endpoint: str) -> None:
        await self._execute(
            "INSERT INTO endpoint_alerts (type, message, endpoint, created_at) VALUES (?, ?, ?, ?)",
            (alert_type, message, endpoint, _now()),
        )

    async def list_endpoint_alerts(self, limit: int = 50) -> list[dict]:
        return await self._fetch_all(
            "SELECT * FROM endpoint_alerts ORDER BY id DESC LIMIT ?",
            (limit,),
        )

    # --- Stats ---

    async def get_stats(self) -> dict:
        """Get database statistics.

        Returns:
            Dictionary of statistics
        """
        async with self.connection() as conn:
            stats = {}

            cursor = await conn.execute("SELECT COUNT(*) FROM users")
            stats["total_users"] = (await cursor.fetchone())[0]

            cursor = await conn.execute("SELECT COUNT(*) FROM api_keys WHERE active = 1")
            stats["active_api_keys"] = (await cursor.fetchone())[0]

            cursor = await conn.execute("SELECT COUNT(*) FROM subscriptions WHERE plan != 'FREE' AND status = 'active'")
            stats["paid_subscriptions"] = (await cursor.fetchone())[0]

            cursor = await conn.execute(
                "SELECT COALESCE(SUM(requests), 0) FROM usage WHERE date = ?",
                (datetime.now(UTC).date().isoformat(),),
            )
            stats["requests_today"] = (await cursor.fetchone())[0]

            cursor = await conn.execute("SELECT COUNT(*) FROM endpoint_alerts")
            stats["endpoint_alerts"] = (await cursor.fetchone())[0]

            return stats
