"""Storage abstractions for user profiles and usage counters."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Optional, Protocol, Set, Tuple

from .models import FeatureId, UsageRecord, UserProfile


class StoreUnavailableError(RuntimeError):
    """Raised when the entitlement store cannot be reached or fails a query."""


class EntitlementStore(Protocol):
    """Persistence operations required by the metering services.

    ``increment_usage`` is the only way to raise a counter and must be a single
    atomic increment-with-ceiling: it returns the updated record, or ``None``
    when the counter already sits at or above ``ceiling``.
    """

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def ensure_profile(self, user_id: str) -> UserProfile:
        ...

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        ...

    async def get_usage(
        self, user_id: str, feature_id: FeatureId, usage_date: date
    ) -> Optional[UsageRecord]:
        ...

    async def increment_usage(
        self,
        user_id: str,
        feature_id: FeatureId,
        usage_date: date,
        *,
        ceiling: int,
    ) -> Optional[UsageRecord]:
        ...

    async def reset_usage(self, user_id: str, feature_id: FeatureId, usage_date: date) -> None:
        ...

    async def record_webhook_event(self, event_id: str, event_type: str) -> bool:
        ...

    async def forget_webhook_event(self, event_id: str) -> None:
        ...


_UsageKey = Tuple[str, FeatureId, date]


@dataclass
class InMemoryEntitlementStore:
    """Process-local store suitable for tests and local development.

    Every method body runs without awaiting, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    profiles: Dict[str, UserProfile] = field(default_factory=dict)
    usage: Dict[_UsageKey, UsageRecord] = field(default_factory=dict)
    webhook_events: Set[str] = field(default_factory=set)

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)

    async def ensure_profile(self, user_id: str) -> UserProfile:
        profile = self.profiles.get(user_id)
        if profile is None:
            profile = UserProfile(user_id=user_id)
            self.profiles[user_id] = profile
        return profile

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        stored = profile.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        self.profiles[profile.user_id] = stored
        return stored

    async def get_usage(
        self, user_id: str, feature_id: FeatureId, usage_date: date
    ) -> Optional[UsageRecord]:
        return self.usage.get((user_id, feature_id, usage_date))

    async def increment_usage(
        self,
        user_id: str,
        feature_id: FeatureId,
        usage_date: date,
        *,
        ceiling: int,
    ) -> Optional[UsageRecord]:
        key = (user_id, feature_id, usage_date)
        current = self.usage.get(key)
        count = current.count if current else 0
        if count >= ceiling:
            return None
        updated = UsageRecord(
            user_id=user_id,
            feature_id=feature_id,
            usage_date=usage_date,
            count=count + 1,
        )
        self.usage[key] = updated
        return updated

    async def reset_usage(self, user_id: str, feature_id: FeatureId, usage_date: date) -> None:
        key = (user_id, feature_id, usage_date)
        if key in self.usage:
            self.usage[key] = self.usage[key].model_copy(update={"count": 0})

    async def record_webhook_event(self, event_id: str, event_type: str) -> bool:
        if event_id in self.webhook_events:
            return False
        self.webhook_events.add(event_id)
        return True

    async def forget_webhook_event(self, event_id: str) -> None:
        self.webhook_events.discard(event_id)


__all__ = ["EntitlementStore", "InMemoryEntitlementStore", "StoreUnavailableError"]
