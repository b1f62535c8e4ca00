"""Service responsible for resolving the daily limit that applies to a user."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from .catalog import get_feature_definition
from .models import Entitlement, FeatureId, Tier, UserProfile


class ProfileReader(Protocol):
    """Read access to stored user profiles."""

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...


class EntitlementResolver:
    """Computes the applicable quota from tier, status and period expiry."""

    def __init__(
        self,
        profiles: ProfileReader,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._profiles = profiles
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve_limit(self, user_id: str, feature_id: FeatureId | str) -> Entitlement:
        """Return the entitlement for ``feature_id``.

        Users without a stored profile are treated as fresh free-tier users.
        The call never writes, so it is safe on every request.
        """

        definition = get_feature_definition(feature_id)
        profile = await self._profiles.get_profile(user_id)
        tier = self.effective_tier(profile)
        return Entitlement(
            feature_id=definition.feature_id,
            tier=tier,
            limit=definition.limit_for(tier),
        )

    def effective_tier(self, profile: Optional[UserProfile]) -> Tier:
        if profile is None:
            return Tier.FREE
        return profile.effective_tier(self._clock())

    def now(self) -> datetime:
        return self._clock()
