from __future__ import annotations

import pytest

from metering.app.entitlements import UsageDecision
from metering.app.feature_gates import (
    FeatureGateError,
    UsageQuotaEvaluation,
    evaluate_usage_quota,
    require_allowed,
    store_unavailable,
)


def test_require_allowed_passes_through_allowed_decision() -> None:
    decision = UsageDecision(allowed=True, count=3, limit=20)

    assert require_allowed(decision) is decision


def test_require_allowed_raises_429_with_detail() -> None:
    decision = UsageDecision(allowed=False, count=20, limit=20, is_premium=False)

    with pytest.raises(FeatureGateError) as exc:
        require_allowed(decision, feature_id="search")

    error = exc.value
    assert error.code == "usage_limit_reached"
    assert error.status_code == 429
    assert error.payload["count"] == 20
    assert error.payload["limit"] == 20
    assert error.payload["upgrade_available"] is True
    assert error.payload["feature_id"] == "search"


def test_premium_denial_does_not_offer_upgrade() -> None:
    decision = UsageDecision(allowed=False, count=100, limit=100, is_premium=True)

    with pytest.raises(FeatureGateError) as exc:
        require_allowed(decision)

    assert exc.value.payload["upgrade_available"] is False


def test_feature_gate_error_converts_to_http_exception() -> None:
    error = store_unavailable("analysis")

    http_exc = error.to_http_exception()

    assert http_exc.status_code == 503
    assert http_exc.detail["error"] == "usage_store_unavailable"
    assert http_exc.detail["feature_id"] == "analysis"
    assert http_exc.headers == {"Retry-After": "5"}


def test_evaluate_usage_quota_near_limit_is_inclusive() -> None:
    evaluation = evaluate_usage_quota(count=18, limit=20)

    assert isinstance(evaluation, UsageQuotaEvaluation)
    assert evaluation.is_near_limit is True
    assert evaluation.is_limit_reached is False
    assert evaluation.remaining == 2


def test_evaluate_usage_quota_below_warning() -> None:
    evaluation = evaluate_usage_quota(count=17, limit=20)

    assert evaluation.is_near_limit is False


def test_evaluate_usage_quota_clamps_remaining_over_limit() -> None:
    evaluation = evaluate_usage_quota(count=95, limit=20)

    assert evaluation.remaining == 0
    assert evaluation.is_limit_reached is True
