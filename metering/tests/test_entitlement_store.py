from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

import pytest

from metering.app.entitlements import FeatureId, InMemoryEntitlementStore, StoreUnavailableError
from metering.app.entitlements.repository import PostgresEntitlementStore

TODAY = date(2024, 3, 15)


class FakeConnection:
    def __init__(self, row=None, error: Exception | None = None) -> None:
        self.row = row
        self.error = error
        self.queries = []

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        if self.error is not None:
            raise self.error
        return self.row

    async def execute(self, query, *args):
        self.queries.append((query, args))
        if self.error is not None:
            raise self.error
        return "OK"


class FakePool:
    def __init__(self, connection: FakeConnection) -> None:
        self.connection = connection

    @asynccontextmanager
    async def acquire(self):
        yield self.connection


def test_in_memory_increment_stops_at_ceiling() -> None:
    store = InMemoryEntitlementStore()

    async def run():
        results = []
        for _ in range(4):
            results.append(
                await store.increment_usage("user-1", FeatureId.SEARCH, TODAY, ceiling=3)
            )
        return results

    results = asyncio.run(run())

    assert [record.count if record else None for record in results] == [1, 2, 3, None]


def test_in_memory_zero_ceiling_creates_nothing() -> None:
    store = InMemoryEntitlementStore()

    result = asyncio.run(store.increment_usage("user-1", FeatureId.ANALYSIS, TODAY, ceiling=0))

    assert result is None
    assert store.usage == {}


def test_in_memory_webhook_events_are_recorded_once() -> None:
    store = InMemoryEntitlementStore()

    async def run():
        first = await store.record_webhook_event("evt_1", "invoice.payment_succeeded")
        second = await store.record_webhook_event("evt_1", "invoice.payment_succeeded")
        await store.forget_webhook_event("evt_1")
        third = await store.record_webhook_event("evt_1", "invoice.payment_succeeded")
        return first, second, third

    assert asyncio.run(run()) == (True, False, True)


def test_postgres_increment_passes_ceiling_to_conditional_upsert() -> None:
    connection = FakeConnection(
        row={"user_id": "user-1", "feature_id": "search", "usage_date": TODAY, "count": 4}
    )
    store = PostgresEntitlementStore(FakePool(connection))

    record = asyncio.run(store.increment_usage("user-1", FeatureId.SEARCH, TODAY, ceiling=20))

    assert record.count == 4
    query, args = connection.queries[0]
    assert "WHERE usage_records.count < $4" in query
    assert args == ("user-1", "search", TODAY, 20)


def test_postgres_increment_refused_when_no_row_returned() -> None:
    store = PostgresEntitlementStore(FakePool(FakeConnection(row=None)))

    assert asyncio.run(store.increment_usage("user-1", FeatureId.SEARCH, TODAY, ceiling=20)) is None


def test_postgres_zero_ceiling_skips_the_database() -> None:
    connection = FakeConnection()
    store = PostgresEntitlementStore(FakePool(connection))

    assert asyncio.run(store.increment_usage("user-1", FeatureId.SEARCH, TODAY, ceiling=0)) is None
    assert connection.queries == []


def test_postgres_connection_errors_become_store_unavailable() -> None:
    store = PostgresEntitlementStore(FakePool(FakeConnection(error=ConnectionRefusedError("refused"))))

    with pytest.raises(StoreUnavailableError):
        asyncio.run(store.get_usage("user-1", FeatureId.SEARCH, TODAY))


def test_postgres_profile_row_is_mapped() -> None:
    now = datetime(2024, 3, 15, tzinfo=timezone.utc)
    row = {
        "user_id": "user-1",
        "tier": "pro",
        "subscription_status": "active",
        "current_period_end": now,
        "payment_customer_ref": "cus_1",
        "payment_subscription_ref": "sub_1",
        "created_at": now,
        "updated_at": now,
    }
    store = PostgresEntitlementStore(FakePool(FakeConnection(row=row)))

    profile = asyncio.run(store.get_profile("user-1"))

    assert profile.tier.value == "pro"
    assert profile.payment_subscription_ref == "sub_1"
