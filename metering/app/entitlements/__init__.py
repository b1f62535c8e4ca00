"""Entitlements domain models and services."""

from .catalog import FEATURE_CATALOG, FeatureDefinition, get_feature_definition
from .models import (
    Entitlement,
    FeatureId,
    SubscriptionStatus,
    Tier,
    UsageDecision,
    UsageRecord,
    UsageSnapshot,
    UserProfile,
)
from .service import EntitlementResolver, ProfileReader
from .store import EntitlementStore, InMemoryEntitlementStore, StoreUnavailableError

__all__ = [
    "FEATURE_CATALOG",
    "FeatureDefinition",
    "get_feature_definition",
    "Entitlement",
    "FeatureId",
    "SubscriptionStatus",
    "Tier",
    "UsageDecision",
    "UsageRecord",
    "UsageSnapshot",
    "UserProfile",
    "EntitlementResolver",
    "ProfileReader",
    "EntitlementStore",
    "InMemoryEntitlementStore",
    "StoreUnavailableError",
]
