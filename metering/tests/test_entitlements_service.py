from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import pytest

from metering.app.entitlements import (
    EntitlementResolver,
    FeatureId,
    SubscriptionStatus,
    Tier,
    UserProfile,
    get_feature_definition,
)

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeProfileReader:
    def __init__(self) -> None:
        self.profiles: Dict[str, UserProfile] = {}
        self.reads = 0

    def add(self, profile: UserProfile) -> None:
        self.profiles[profile.user_id] = profile

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        self.reads += 1
        return self.profiles.get(user_id)


@pytest.fixture
def profiles() -> FakeProfileReader:
    return FakeProfileReader()


@pytest.fixture
def resolver(profiles: FakeProfileReader) -> EntitlementResolver:
    return EntitlementResolver(profiles, clock=lambda: NOW)


def test_missing_profile_resolves_to_free_limit(resolver: EntitlementResolver) -> None:
    entitlement = asyncio.run(resolver.resolve_limit("user-1", FeatureId.SEARCH))

    assert entitlement.tier == Tier.FREE
    assert entitlement.limit == 20
    assert entitlement.is_premium is False


def test_active_pro_profile_resolves_to_pro_limit(resolver, profiles) -> None:
    profiles.add(
        UserProfile(
            user_id="user-1",
            tier=Tier.PRO,
            subscription_status=SubscriptionStatus.ACTIVE,
            current_period_end=NOW + timedelta(days=10),
        )
    )

    search = asyncio.run(resolver.resolve_limit("user-1", "search"))
    analysis = asyncio.run(resolver.resolve_limit("user-1", FeatureId.ANALYSIS))

    assert search.limit == 100
    assert search.is_premium is True
    assert analysis.limit == 50


def test_pro_without_period_end_is_honored(resolver, profiles) -> None:
    profiles.add(
        UserProfile(user_id="user-1", tier=Tier.PRO, subscription_status=SubscriptionStatus.ACTIVE)
    )

    entitlement = asyncio.run(resolver.resolve_limit("user-1", FeatureId.SEARCH))

    assert entitlement.tier == Tier.PRO


def test_expired_period_with_active_status_falls_back_to_free(resolver, profiles) -> None:
    profiles.add(
        UserProfile(
            user_id="user-1",
            tier=Tier.PRO,
            subscription_status=SubscriptionStatus.ACTIVE,
            current_period_end=NOW - timedelta(days=1),
        )
    )

    entitlement = asyncio.run(resolver.resolve_limit("user-1", FeatureId.SEARCH))

    assert entitlement.tier == Tier.FREE
    assert entitlement.limit == 20
    # The stored record is not rewritten by resolution.
    assert profiles.profiles["user-1"].tier == Tier.PRO


@pytest.mark.parametrize(
    "status",
    [SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED, SubscriptionStatus.NONE],
)
def test_pro_tier_with_inactive_status_is_free(resolver, profiles, status) -> None:
    profiles.add(
        UserProfile(
            user_id="user-1",
            tier=Tier.PRO,
            subscription_status=status,
            current_period_end=NOW + timedelta(days=10),
        )
    )

    entitlement = asyncio.run(resolver.resolve_limit("user-1", FeatureId.SEARCH))

    assert entitlement.limit == 20


def test_resolution_is_idempotent(resolver, profiles) -> None:
    profiles.add(
        UserProfile(
            user_id="user-1",
            tier=Tier.PRO,
            subscription_status=SubscriptionStatus.ACTIVE,
            current_period_end=NOW + timedelta(hours=1),
        )
    )

    first = asyncio.run(resolver.resolve_limit("user-1", FeatureId.SEARCH))
    second = asyncio.run(resolver.resolve_limit("user-1", FeatureId.SEARCH))

    assert first == second
    assert profiles.reads == 2


def test_unknown_feature_raises_key_error(resolver) -> None:
    with pytest.raises(KeyError):
        asyncio.run(resolver.resolve_limit("user-1", "export"))


def test_naive_period_end_is_treated_as_utc() -> None:
    profile = UserProfile(
        user_id="user-1",
        tier=Tier.PRO,
        subscription_status=SubscriptionStatus.ACTIVE,
        current_period_end=datetime(2024, 3, 15, 13, 0),
    )

    assert profile.current_period_end.tzinfo is not None
    assert profile.effective_tier(NOW) == Tier.PRO
    assert profile.effective_tier(NOW + timedelta(hours=1)) == Tier.FREE


def test_feature_definition_limits() -> None:
    definition = get_feature_definition(FeatureId.ANALYSIS)

    assert definition.limit_for(Tier.FREE) == 5
    assert definition.limit_for(Tier.PRO) == 50
    assert definition.warning_ratio == pytest.approx(0.9)
