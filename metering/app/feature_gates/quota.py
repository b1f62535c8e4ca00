"""Daily usage quota evaluation utilities for feature gating."""
from __future__ import annotations

from dataclasses import dataclass

from ..entitlements.catalog import DEFAULT_WARNING_RATIO


@dataclass(frozen=True)
class UsageQuotaEvaluation:
    """Represents where a usage count sits relative to its daily limit."""

    count: int
    limit: int
    warning_ratio: float
    remaining: int
    is_near_limit: bool
    is_limit_reached: bool


def evaluate_usage_quota(
    *,
    count: int,
    limit: int,
    warning_ratio: float = DEFAULT_WARNING_RATIO,
) -> UsageQuotaEvaluation:
    """Classify a usage count against its limit and warning threshold."""

    count = max(count, 0)
    limit = max(limit, 0)
    return UsageQuotaEvaluation(
        count=count,
        limit=limit,
        warning_ratio=warning_ratio,
        remaining=max(0, limit - count),
        is_near_limit=count >= limit * warning_ratio,
        is_limit_reached=count >= limit,
    )
