"""Client-side usage tracking against the metering API."""

from .api import HttpUsageApi, IncrementResult, ServerUsage, UsageApi, UsageApiError
from .tracker import (
    ClientUsageMirror,
    InMemoryMirrorStore,
    MirrorStore,
    TrackerSettings,
    TrackerState,
    UsageTracker,
    default_tracker_settings,
)

__all__ = [
    "ClientUsageMirror",
    "HttpUsageApi",
    "InMemoryMirrorStore",
    "IncrementResult",
    "MirrorStore",
    "ServerUsage",
    "TrackerSettings",
    "TrackerState",
    "UsageApi",
    "UsageApiError",
    "UsageTracker",
    "default_tracker_settings",
]
