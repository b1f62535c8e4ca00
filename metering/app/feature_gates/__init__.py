"""Feature gating utilities coordinating usage enforcement."""
from .enforcement import require_allowed, store_unavailable
from .exceptions import FeatureGateError
from .quota import UsageQuotaEvaluation, evaluate_usage_quota

__all__ = [
    "FeatureGateError",
    "UsageQuotaEvaluation",
    "evaluate_usage_quota",
    "require_allowed",
    "store_unavailable",
]
