"""Per-day usage counters and the allow/deny decision for metered features."""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from ..entitlements.catalog import get_feature_definition
from ..entitlements.models import FeatureId, UsageDecision, UsageSnapshot
from ..entitlements.service import EntitlementResolver
from ..entitlements.store import EntitlementStore, StoreUnavailableError
from ..feature_gates.quota import evaluate_usage_quota

LOGGER = logging.getLogger("metering.usage")

T = TypeVar("T")


class UsageCounterService:
    """Single entry point for reading and mutating usage counters."""

    def __init__(
        self,
        store: EntitlementStore,
        resolver: EntitlementResolver,
        *,
        read_attempts: int = 2,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._read_attempts = max(1, read_attempts)
        self._clock = clock or resolver.now

    def today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    async def check_and_increment(self, user_id: str, feature_id: FeatureId | str) -> UsageDecision:
        """Consume one use of ``feature_id`` if quota remains.

        The check and the increment happen in one store call: a denied request
        consumes nothing, and an allowed request has already been counted by
        the time the decision is returned.
        """

        definition = get_feature_definition(feature_id)
        feature = definition.feature_id
        entitlement = await self._read(lambda: self._resolver.resolve_limit(user_id, feature))
        usage_date = self.today()

        record = await self._store.increment_usage(
            user_id,
            feature,
            usage_date,
            ceiling=entitlement.limit,
        )
        if record is None:
            current = await self._read(lambda: self._store.get_usage(user_id, feature, usage_date))
            count = current.count if current else 0
            LOGGER.info(
                "Usage limit reached user=%s feature=%s count=%s limit=%s",
                user_id,
                feature.value,
                count,
                entitlement.limit,
            )
            return UsageDecision(
                allowed=False,
                count=count,
                limit=entitlement.limit,
                is_premium=entitlement.is_premium,
            )

        LOGGER.debug(
            "Usage incremented user=%s feature=%s count=%s limit=%s",
            user_id,
            feature.value,
            record.count,
            entitlement.limit,
        )
        return UsageDecision(
            allowed=True,
            count=record.count,
            limit=entitlement.limit,
            is_premium=entitlement.is_premium,
        )

    async def get_usage(self, user_id: str, feature_id: FeatureId | str) -> UsageSnapshot:
        """Return today's usage without consuming quota."""

        definition = get_feature_definition(feature_id)
        feature = definition.feature_id
        entitlement = await self._read(lambda: self._resolver.resolve_limit(user_id, feature))
        usage_date = self.today()
        record = await self._read(lambda: self._store.get_usage(user_id, feature, usage_date))
        evaluation = evaluate_usage_quota(
            count=record.count if record else 0,
            limit=entitlement.limit,
            warning_ratio=definition.warning_ratio,
        )
        return UsageSnapshot(
            count=evaluation.count,
            limit=evaluation.limit,
            remaining=evaluation.remaining,
            is_limit_reached=evaluation.is_limit_reached,
            is_premium=entitlement.is_premium,
        )

    async def reset_usage(self, user_id: str, feature_ids: Iterable[FeatureId]) -> None:
        """Zero today's counters for ``feature_ids``.

        Only subscription lifecycle handling calls this, after an upgrade.
        """

        usage_date = self.today()
        for feature_id in feature_ids:
            await self._store.reset_usage(user_id, feature_id, usage_date)
            LOGGER.info(
                "Usage reset user=%s feature=%s date=%s",
                user_id,
                feature_id.value,
                usage_date.isoformat(),
            )

    async def _read(self, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except StoreUnavailableError as exc:
                LOGGER.warning(
                    "Entitlement store read failed (attempt %s/%s): %s",
                    attempt,
                    self._read_attempts,
                    exc,
                )
                if attempt >= self._read_attempts:
                    raise
            attempt += 1
