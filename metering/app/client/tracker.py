"""Optimistic client-side usage tracker.

The tracker keeps a local mirror of one feature's counter so the UI can react
immediately, then reconciles with the server. The mirror is never
authoritative: every server response replaces it.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..entitlements.catalog import DEFAULT_WARNING_RATIO, FEATURE_CATALOG, get_feature_definition
from ..entitlements.models import FeatureId, Tier
from .api import UsageApi, UsageApiError

logger = logging.getLogger("metering.client")


class TrackerState(str, Enum):
    IDLE = "idle"
    OPTIMISTICALLY_INCREMENTED = "optimistically_incremented"
    RECONCILED = "reconciled"
    LIMIT_REACHED = "limit_reached"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class TrackerSettings:
    limit: int
    warning_ratio: float = DEFAULT_WARNING_RATIO


def default_tracker_settings(tier: Tier = Tier.FREE) -> Dict[FeatureId, TrackerSettings]:
    """Initial per-feature settings, used until the server reports real limits."""

    return {
        feature_id: TrackerSettings(
            limit=definition.limit_for(tier),
            warning_ratio=definition.warning_ratio,
        )
        for feature_id, definition in FEATURE_CATALOG.items()
    }


@dataclass(frozen=True)
class ClientUsageMirror:
    count: int = 0
    limit: int = 0
    is_premium: bool = False
    warning_ratio: float = DEFAULT_WARNING_RATIO

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def is_limit_reached(self) -> bool:
        return self.count >= self.limit

    @property
    def is_near_limit(self) -> bool:
        return self.count >= self.warning_ratio * self.limit

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientUsageMirror":
        return cls(
            count=max(0, int(data.get("count", 0))),
            limit=max(0, int(data.get("limit", 0))),
            is_premium=bool(data.get("is_premium", False)),
            warning_ratio=float(data.get("warning_ratio", DEFAULT_WARNING_RATIO)),
        )


class MirrorStore(Protocol):
    """Durable key/value storage for mirrors, such as browser local storage."""

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def save(self, key: str, value: Dict[str, Any]) -> None:
        ...


class InMemoryMirrorStore:
    """Keeps serialized mirrors in a dict, the way local storage keeps strings."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._items.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable usage mirror %s", key)
            return None

    def save(self, key: str, value: Dict[str, Any]) -> None:
        self._items[key] = json.dumps(value)


Listener = Callable[[ClientUsageMirror], None]


def _fails_open(exc: UsageApiError) -> bool:
    """Only unreachable servers and 5xx answers let the action proceed."""

    return exc.status_code is None or exc.status_code >= 500


class UsageTracker:
    """Tracks one metered feature for one signed-in user."""

    def __init__(
        self,
        feature_id: FeatureId | str,
        api: UsageApi,
        *,
        settings: Optional[TrackerSettings] = None,
        storage: Optional[MirrorStore] = None,
        user_key: str = "anonymous",
        on_limit_reached: Optional[Listener] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.feature_id = get_feature_definition(feature_id).feature_id
        settings = settings or default_tracker_settings()[self.feature_id]
        self._api = api
        self._storage = storage or InMemoryMirrorStore()
        self._storage_key = f"usage:{user_key}:{self.feature_id.value}"
        self._on_limit_reached = on_limit_reached
        self._on_error = on_error
        self._listeners: List[Listener] = []
        self._issued = 0
        self._applied = 0

        self.mirror = ClientUsageMirror(limit=settings.limit, warning_ratio=settings.warning_ratio)
        self.state = TrackerState.IDLE
        self.show_limit_prompt = False
        self.last_error: Optional[Exception] = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def mount(self) -> ClientUsageMirror:
        """Paint from the cached mirror, then replace it with server values."""

        cached = self._storage.load(self._storage_key)
        if cached:
            self._set_mirror(
                replace(ClientUsageMirror.from_dict(cached), warning_ratio=self.mirror.warning_ratio),
                TrackerState.IDLE,
            )
        return await self.refresh()

    async def refresh(self) -> ClientUsageMirror:
        seq = self._next_seq()
        try:
            usage = await self._api.fetch_usage(self.feature_id)
        except UsageApiError as exc:
            self._record_error(exc)
            if exc.status_code == 401:
                self.state = TrackerState.UNAUTHENTICATED
            return self.mirror
        self._apply_server(seq, count=usage.count, limit=usage.limit, is_premium=usage.is_premium)
        return self.mirror

    async def increment(self) -> bool:
        """Record one use. Returns ``False`` when the user must not proceed."""

        if self.mirror.is_limit_reached:
            self._prompt()
            return False

        self._set_mirror(
            replace(self.mirror, count=self.mirror.count + 1),
            TrackerState.OPTIMISTICALLY_INCREMENTED,
        )
        seq = self._next_seq()
        try:
            result = await self._api.increment(self.feature_id)
        except UsageApiError as exc:
            self._record_error(exc)
            if _fails_open(exc):
                # Keep the optimistic bump; the next reconciliation corrects drift.
                return True
            self._set_mirror(
                replace(self.mirror, count=max(0, self.mirror.count - 1)),
                TrackerState.IDLE,
            )
            if exc.status_code == 401:
                self.state = TrackerState.UNAUTHENTICATED
            return False

        self._apply_server(seq, count=result.count, limit=result.limit, is_premium=result.is_premium)
        if not result.success:
            self._prompt()
            return False
        return True

    async def watch(self, interval_seconds: float = 60.0, *, iterations: Optional[int] = None) -> None:
        """Refresh periodically until cancelled or ``iterations`` runs complete."""

        completed = 0
        while iterations is None or completed < iterations:
            await asyncio.sleep(interval_seconds)
            await self.refresh()
            completed += 1

    def dismiss_prompt(self) -> None:
        self.show_limit_prompt = False

    def clear_error(self) -> None:
        self.last_error = None

    def _next_seq(self) -> int:
        self._issued += 1
        return self._issued

    def _apply_server(self, seq: int, *, count: int, limit: int, is_premium: bool) -> None:
        if seq < self._applied:
            logger.debug(
                "Ignoring stale usage response seq=%s (applied=%s) feature=%s",
                seq,
                self._applied,
                self.feature_id.value,
            )
            return
        self._applied = seq
        self.last_error = None
        self._set_mirror(
            replace(self.mirror, count=count, limit=limit, is_premium=is_premium),
            TrackerState.RECONCILED,
        )

    def _set_mirror(self, mirror: ClientUsageMirror, state: TrackerState) -> None:
        self.mirror = mirror
        self.state = TrackerState.LIMIT_REACHED if mirror.is_limit_reached else state
        self._storage.save(self._storage_key, mirror.to_dict())
        for listener in list(self._listeners):
            listener(mirror)

    def _prompt(self) -> None:
        self.show_limit_prompt = True
        self.state = TrackerState.LIMIT_REACHED
        if self._on_limit_reached is not None:
            self._on_limit_reached(self.mirror)

    def _record_error(self, exc: Exception) -> None:
        logger.warning("Usage sync failed for %s: %s", self.feature_id.value, exc)
        self.last_error = exc
        if self._on_error is not None:
            self._on_error(exc)


__all__ = [
    "ClientUsageMirror",
    "InMemoryMirrorStore",
    "MirrorStore",
    "TrackerSettings",
    "TrackerState",
    "UsageTracker",
    "default_tracker_settings",
]
