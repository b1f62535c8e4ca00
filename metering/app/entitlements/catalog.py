"""Static catalog definitions for metered features."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from .models import FeatureId, Tier

DEFAULT_WARNING_RATIO = 0.9


@dataclass(frozen=True)
class FeatureDefinition:
    """Describes a metered feature and its daily limit per tier."""

    feature_id: FeatureId
    display_name: str
    free_limit: int
    pro_limit: int
    warning_ratio: float = DEFAULT_WARNING_RATIO

    def __post_init__(self) -> None:
        if self.free_limit < 0 or self.pro_limit < 0:
            raise ValueError("feature limits must be >= 0")

    def limit_for(self, tier: Tier) -> int:
        return self.pro_limit if tier == Tier.PRO else self.free_limit


FEATURE_CATALOG: Dict[FeatureId, FeatureDefinition] = {
    FeatureId.SEARCH: FeatureDefinition(
        feature_id=FeatureId.SEARCH,
        display_name="Insight search",
        free_limit=20,
        pro_limit=100,
    ),
    FeatureId.ANALYSIS: FeatureDefinition(
        feature_id=FeatureId.ANALYSIS,
        display_name="AI analysis",
        free_limit=5,
        pro_limit=50,
    ),
}


def get_feature_definition(feature_id: FeatureId | str) -> FeatureDefinition:
    """Return a feature definition, raising if unsupported."""

    try:
        return FEATURE_CATALOG[FeatureId(feature_id)]
    except (KeyError, ValueError) as exc:
        raise KeyError(f"Unknown feature id: {feature_id}") from exc
