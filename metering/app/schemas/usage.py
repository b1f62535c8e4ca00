"""API schemas for usage endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import UsageDecision, UsageSnapshot


class UsageResponse(BaseModel):
    count: int
    limit: int
    remaining: int
    is_limit_reached: bool = Field(alias="isLimitReached")
    is_premium: bool = Field(alias="isPremium")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_snapshot(cls, snapshot: UsageSnapshot) -> "UsageResponse":
        return cls(
            count=snapshot.count,
            limit=snapshot.limit,
            remaining=snapshot.remaining,
            is_limit_reached=snapshot.is_limit_reached,
            is_premium=snapshot.is_premium,
        )


class IncrementResponse(BaseModel):
    success: bool
    count: int
    limit: int
    limit_reached: bool = Field(alias="limitReached")
    is_premium: bool = Field(alias="isPremium")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_decision(cls, decision: UsageDecision) -> "IncrementResponse":
        return cls(
            success=decision.allowed,
            count=decision.count,
            limit=decision.limit,
            limit_reached=decision.limit_reached,
            is_premium=decision.is_premium,
        )
