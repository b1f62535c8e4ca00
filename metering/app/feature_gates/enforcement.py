"""Helpers for enforcing metered-feature decisions on API and service layers."""
from __future__ import annotations

from fastapi import status

from ..entitlements.models import UsageDecision
from .exceptions import FeatureGateError


def require_allowed(
    decision: UsageDecision,
    *,
    feature_id: str | None = None,
    error_code: str = "usage_limit_reached",
    message: str | None = None,
) -> UsageDecision:
    """Ensure a check-and-increment decision permits the paid operation.

    Parameters
    ----------
    decision:
        The :class:`UsageDecision` returned by the usage counter service.
    feature_id:
        Optional feature identifier included in the error detail.
    error_code:
        Optional override for the surfaced error code when the decision is a
        denial. Defaults to ``"usage_limit_reached"``.
    message:
        Optional human-friendly message. If omitted, a default message naming
        the limit is used.
    """

    if decision.allowed:
        return decision

    detail: dict[str, object] = {
        "count": decision.count,
        "limit": decision.limit,
        "is_premium": decision.is_premium,
        "upgrade_available": not decision.is_premium,
    }
    if feature_id:
        detail["feature_id"] = feature_id
    raise FeatureGateError(
        code=error_code,
        message=message or f"Daily limit of {decision.limit} uses reached.",
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=detail,
    )


def store_unavailable(feature_id: str | None = None) -> FeatureGateError:
    """Build the error used when quota cannot be verified."""

    return FeatureGateError(
        code="usage_store_unavailable",
        message="Usage could not be verified. Please try again shortly.",
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"feature_id": feature_id} if feature_id else None,
        headers={"Retry-After": "5"},
    )
