"""PostgreSQL persistence for user profiles and usage counters."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Dict, Optional

import asyncpg

from .models import FeatureId, SubscriptionStatus, Tier, UsageRecord, UserProfile
from .store import StoreUnavailableError

LOGGER = logging.getLogger("metering.store")


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS user_profiles (
    user_id TEXT PRIMARY KEY,
    tier TEXT NOT NULL DEFAULT 'free',
    subscription_status TEXT NOT NULL DEFAULT 'none',
    current_period_end TIMESTAMP WITH TIME ZONE,
    payment_customer_ref TEXT,
    payment_subscription_ref TEXT,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    CONSTRAINT user_profiles_tier_check CHECK (tier IN ('free', 'pro')),
    CONSTRAINT user_profiles_status_check
        CHECK (subscription_status IN ('none', 'active', 'past_due', 'canceled'))
);

CREATE TABLE IF NOT EXISTS usage_records (
    user_id TEXT NOT NULL,
    feature_id TEXT NOT NULL,
    usage_date DATE NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, feature_id, usage_date),
    CONSTRAINT usage_records_count_check CHECK (count >= 0)
);

CREATE INDEX IF NOT EXISTS idx_usage_records_user_date
    ON usage_records(user_id, usage_date DESC);

CREATE TABLE IF NOT EXISTS billing_webhook_events (
    event_id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    received_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
);
"""

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


async def create_store_pool(db_config: Dict[str, Any], *, connect_timeout: float) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        min_size=1,
        max_size=10,
        command_timeout=10,
        timeout=connect_timeout,
        **db_config,
    )


def _row_to_profile(row: asyncpg.Record) -> UserProfile:
    return UserProfile(
        user_id=row["user_id"],
        tier=Tier(row["tier"]),
        subscription_status=SubscriptionStatus(row["subscription_status"]),
        current_period_end=row.get("current_period_end"),
        payment_customer_ref=row.get("payment_customer_ref"),
        payment_subscription_ref=row.get("payment_subscription_ref"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_usage(row: asyncpg.Record) -> UsageRecord:
    return UsageRecord(
        user_id=row["user_id"],
        feature_id=FeatureId(row["feature_id"]),
        usage_date=row["usage_date"],
        count=int(row["count"]),
    )


class PostgresEntitlementStore:
    """Concrete store persisting profiles and usage counters in PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        try:
            async with self._pool.acquire() as connection:
                yield connection
        except _STORE_ERRORS as exc:
            LOGGER.warning("Entitlement store query failed: %s", exc)
            raise StoreUnavailableError(str(exc)) from exc

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        async with self._connection() as connection:
            row = await connection.fetchrow(
                """
                SELECT *
                FROM user_profiles
                WHERE user_id = $1
                LIMIT 1
                """,
                user_id,
            )
        return _row_to_profile(row) if row else None

    async def ensure_profile(self, user_id: str) -> UserProfile:
        async with self._connection() as connection:
            async with connection.transaction():
                await connection.execute(
                    """
                    INSERT INTO user_profiles (user_id)
                    VALUES ($1)
                    ON CONFLICT (user_id) DO NOTHING
                    """,
                    user_id,
                )
                row = await connection.fetchrow(
                    "SELECT * FROM user_profiles WHERE user_id = $1",
                    user_id,
                )
        if not row:
            raise StoreUnavailableError("Failed to create user profile")
        return _row_to_profile(row)

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        async with self._connection() as connection:
            row = await connection.fetchrow(
                """
                INSERT INTO user_profiles (
                    user_id,
                    tier,
                    subscription_status,
                    current_period_end,
                    payment_customer_ref,
                    payment_subscription_ref
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (user_id) DO UPDATE SET
                    tier = EXCLUDED.tier,
                    subscription_status = EXCLUDED.subscription_status,
                    current_period_end = EXCLUDED.current_period_end,
                    payment_customer_ref = EXCLUDED.payment_customer_ref,
                    payment_subscription_ref = EXCLUDED.payment_subscription_ref,
                    updated_at = NOW()
                RETURNING *
                """,
                profile.user_id,
                profile.tier.value,
                profile.subscription_status.value,
                profile.current_period_end,
                profile.payment_customer_ref,
                profile.payment_subscription_ref,
            )
        if not row:
            raise StoreUnavailableError("Failed to persist user profile")
        return _row_to_profile(row)

    async def get_usage(
        self, user_id: str, feature_id: FeatureId, usage_date: date
    ) -> Optional[UsageRecord]:
        async with self._connection() as connection:
            row = await connection.fetchrow(
                """
                SELECT user_id, feature_id, usage_date, count
                FROM usage_records
                WHERE user_id = $1 AND feature_id = $2 AND usage_date = $3
                """,
                user_id,
                feature_id.value,
                usage_date,
            )
        return _row_to_usage(row) if row else None

    async def increment_usage(
        self,
        user_id: str,
        feature_id: FeatureId,
        usage_date: date,
        *,
        ceiling: int,
    ) -> Optional[UsageRecord]:
        if ceiling <= 0:
            return None
        # The conflict branch re-checks the ceiling under the row lock, so
        # concurrent callers cannot both pass the same pre-increment count.
        async with self._connection() as connection:
            row = await connection.fetchrow(
                """
                INSERT INTO usage_records (user_id, feature_id, usage_date, count)
                VALUES ($1, $2, $3, 1)
                ON CONFLICT (user_id, feature_id, usage_date) DO UPDATE SET
                    count = usage_records.count + 1,
                    updated_at = NOW()
                WHERE usage_records.count < $4
                RETURNING user_id, feature_id, usage_date, count
                """,
                user_id,
                feature_id.value,
                usage_date,
                ceiling,
            )
        return _row_to_usage(row) if row else None

    async def reset_usage(self, user_id: str, feature_id: FeatureId, usage_date: date) -> None:
        async with self._connection() as connection:
            await connection.execute(
                """
                UPDATE usage_records
                SET count = 0, updated_at = NOW()
                WHERE user_id = $1 AND feature_id = $2 AND usage_date = $3
                """,
                user_id,
                feature_id.value,
                usage_date,
            )

    async def record_webhook_event(self, event_id: str, event_type: str) -> bool:
        async with self._connection() as connection:
            row = await connection.fetchrow(
                """
                INSERT INTO billing_webhook_events (event_id, event_type)
                VALUES ($1, $2)
                ON CONFLICT (event_id) DO NOTHING
                RETURNING event_id
                """,
                event_id,
                event_type,
            )
        return row is not None

    async def forget_webhook_event(self, event_id: str) -> None:
        async with self._connection() as connection:
            await connection.execute(
                "DELETE FROM billing_webhook_events WHERE event_id = $1",
                event_id,
            )


__all__ = ["PostgresEntitlementStore", "SCHEMA_SQL", "create_store_pool"]
