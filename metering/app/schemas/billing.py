"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import CheckoutSession
from ..entitlements.models import SubscriptionStatus, Tier, UserProfile


class SubscriptionResponse(BaseModel):
    user_id: str = Field(alias="userId")
    tier: Tier
    effective_tier: Tier = Field(alias="effectiveTier")
    subscription_status: SubscriptionStatus = Field(alias="subscriptionStatus")
    current_period_end: Optional[datetime] = Field(alias="currentPeriodEnd", default=None)
    is_premium: bool = Field(alias="isPremium")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_profile(cls, profile: UserProfile, *, now: datetime) -> "SubscriptionResponse":
        return cls(
            user_id=profile.user_id,
            tier=profile.tier,
            effective_tier=profile.effective_tier(now),
            subscription_status=profile.subscription_status,
            current_period_end=profile.current_period_end,
            is_premium=profile.is_premium(now),
        )


class CheckoutSessionResponse(BaseModel):
    session_id: str = Field(alias="sessionId")
    url: str
    expires_at: Optional[datetime] = Field(alias="expiresAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_checkout(cls, session: CheckoutSession) -> "CheckoutSessionResponse":
        return cls(session_id=session.session_id, url=session.url, expires_at=session.expires_at)


class VerifyPaymentRequest(BaseModel):
    session_id: str = Field(alias="sessionId", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class VerifyPaymentResponse(BaseModel):
    success: bool
    is_premium: bool = Field(alias="isPremium")
    profile: SubscriptionResponse

    model_config = ConfigDict(populate_by_name=True)
