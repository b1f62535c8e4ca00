"""Shared application context for reusable dependencies.

One :class:`AppContext` is built per process in ``create_app`` and attached to
``app.state``; routers receive it through :func:`get_app_context`.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import Request

from .app.billing import BillingEventLogger, PaymentProvider, SubscriptionLifecycleSync
from .app.entitlements import EntitlementResolver, EntitlementStore, InMemoryEntitlementStore
from .app.services.billing import LoggingBillingEventLogger, build_payment_provider
from .app.usage import UsageCounterService
from .config import MeteringConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AppContext:
    config: MeteringConfig
    store: EntitlementStore
    resolver: EntitlementResolver
    usage: UsageCounterService
    lifecycle: SubscriptionLifecycleSync
    provider: PaymentProvider
    clock: Callable[[], datetime] = _utcnow
    pool: Optional[Any] = None


def build_app_context(
    config: MeteringConfig,
    *,
    store: Optional[EntitlementStore] = None,
    provider: Optional[PaymentProvider] = None,
    event_logger: Optional[BillingEventLogger] = None,
    clock: Optional[Callable[[], datetime]] = None,
    pool: Optional[Any] = None,
) -> AppContext:
    """Wire the metering services around a single store and clock."""

    clock = clock or _utcnow
    store = store if store is not None else InMemoryEntitlementStore()
    provider = provider if provider is not None else build_payment_provider(config)
    resolver = EntitlementResolver(store, clock=clock)
    usage = UsageCounterService(
        store,
        resolver,
        read_attempts=config.store_read_attempts,
        clock=clock,
    )
    lifecycle = SubscriptionLifecycleSync(
        store=store,
        usage=usage,
        provider=provider,
        event_logger=event_logger or LoggingBillingEventLogger(),
        clock=clock,
    )
    return AppContext(
        config=config,
        store=store,
        resolver=resolver,
        usage=usage,
        lifecycle=lifecycle,
        provider=provider,
        clock=clock,
        pool=pool,
    )


def get_app_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("Application context has not been configured yet")
    return context


__all__ = ["AppContext", "build_app_context", "get_app_context"]
