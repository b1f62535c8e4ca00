"""Domain models for entitlements and per-day usage metering."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Tier(str, Enum):
    """Canonical identifiers for subscription tiers."""

    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Lifecycle state for a user's paid subscription."""

    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class FeatureId(str, Enum):
    """Metered features that consume daily quota."""

    SEARCH = "search"
    ANALYSIS = "analysis"


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UserProfile(BaseModel):
    """Subscription state for a single user, as synchronized from billing."""

    user_id: str
    tier: Tier = Tier.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    current_period_end: Optional[datetime] = None
    payment_customer_ref: Optional[str] = None
    payment_subscription_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @field_validator("current_period_end")
    @classmethod
    def _normalize_period_end(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value)

    def effective_tier(self, now: datetime) -> Tier:
        """Return the tier honored for limit purposes at ``now``.

        A stored ``pro`` tier only counts while the subscription is active and
        the paid period has not lapsed. Anything else falls back to ``free``
        without touching the stored tier, so the next billing event can repair
        the record.
        """

        if self.tier != Tier.PRO:
            return Tier.FREE
        if self.subscription_status != SubscriptionStatus.ACTIVE:
            return Tier.FREE
        if self.current_period_end is not None and self.current_period_end <= _ensure_utc(now):
            return Tier.FREE
        return Tier.PRO

    def is_premium(self, now: datetime) -> bool:
        return self.effective_tier(now) == Tier.PRO


class UsageRecord(BaseModel):
    """Consumption tally for one user, one feature and one UTC day."""

    user_id: str
    feature_id: FeatureId
    usage_date: date
    count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple[str, FeatureId, date]:
        return (self.user_id, self.feature_id, self.usage_date)


class Entitlement(BaseModel):
    """Resolved quota for a user/feature pair at a point in time."""

    feature_id: FeatureId
    tier: Tier
    limit: int = Field(ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def is_premium(self) -> bool:
        return self.tier == Tier.PRO


class UsageDecision(BaseModel):
    """Outcome of a combined check-and-increment call."""

    allowed: bool
    count: int = Field(ge=0)
    limit: int = Field(ge=0)
    is_premium: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def limit_reached(self) -> bool:
        return self.count >= self.limit


class UsageSnapshot(BaseModel):
    """Read-only view of today's usage for a feature."""

    count: int = Field(ge=0)
    limit: int = Field(ge=0)
    remaining: int = Field(ge=0)
    is_limit_reached: bool
    is_premium: bool = False

    model_config = ConfigDict(frozen=True)
