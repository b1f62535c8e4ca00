"""API routes exposing per-feature usage counters."""
from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, status

from ...app_context import AppContext, get_app_context
from ..entitlements import FeatureId, StoreUnavailableError, UsageDecision, get_feature_definition
from ..feature_gates import FeatureGateError, require_allowed, store_unavailable
from ..identity import SessionUser, get_current_user
from ..schemas.usage import IncrementResponse, UsageResponse

router = APIRouter(prefix="/api/usage", tags=["usage"])


def _resolve_feature(feature_id: str) -> FeatureId:
    try:
        return get_feature_definition(feature_id).feature_id
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown feature") from exc


@router.get("/{feature_id}", response_model=UsageResponse)
async def get_usage(
    feature_id: str,
    *,
    current_user: SessionUser = Depends(get_current_user),
    context: AppContext = Depends(get_app_context),
) -> UsageResponse:
    """Return today's usage for ``feature_id`` without consuming quota."""

    feature = _resolve_feature(feature_id)
    try:
        snapshot = await context.usage.get_usage(str(current_user.id), feature)
    except StoreUnavailableError as exc:
        raise store_unavailable(feature.value).to_http_exception() from exc
    return UsageResponse.from_snapshot(snapshot)


@router.post("/{feature_id}/increment", response_model=IncrementResponse)
async def increment_usage(
    feature_id: str,
    *,
    current_user: SessionUser = Depends(get_current_user),
    context: AppContext = Depends(get_app_context),
) -> IncrementResponse:
    """Consume one use of ``feature_id``.

    A denial is reported as ``success: false`` rather than an error status so
    the client can reconcile its counter from the body.
    """

    feature = _resolve_feature(feature_id)
    try:
        decision = await context.usage.check_and_increment(str(current_user.id), feature)
    except StoreUnavailableError as exc:
        raise store_unavailable(feature.value).to_http_exception() from exc
    return IncrementResponse.from_decision(decision)


def metered_feature(feature_id: FeatureId | str) -> Callable[..., Awaitable[UsageDecision]]:
    """Build a dependency that consumes quota before a paid endpoint runs.

    The endpoint body only executes when the increment succeeded; otherwise the
    request fails with 429 (limit reached) or 503 (usage store unreachable).
    """

    feature = get_feature_definition(feature_id).feature_id

    async def _consume(
        current_user: SessionUser = Depends(get_current_user),
        context: AppContext = Depends(get_app_context),
    ) -> UsageDecision:
        try:
            decision = await context.usage.check_and_increment(str(current_user.id), feature)
        except StoreUnavailableError as exc:
            raise store_unavailable(feature.value).to_http_exception() from exc
        try:
            return require_allowed(decision, feature_id=feature.value)
        except FeatureGateError as exc:
            raise exc.to_http_exception() from exc

    return _consume


__all__ = ["metered_feature", "router"]
