"""Core service keeping user profiles in step with the payment provider."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from ..entitlements.catalog import FEATURE_CATALOG
from ..entitlements.models import SubscriptionStatus, Tier, UserProfile
from ..entitlements.store import EntitlementStore
from ..usage.service import UsageCounterService
from .exceptions import (
    CheckoutOwnershipError,
    PaymentNotCompletedError,
    SubscriptionMismatchError,
)
from .models import (
    USER_REFERENCE_KEY,
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutConfirmation,
    CheckoutSession,
    ProviderSubscription,
)

logger = logging.getLogger("billing")


class PaymentProvider(Protocol):
    """External payment processor integration.

    Implementations are synchronous; the service runs them in a worker thread.
    """

    def create_checkout_session(
        self,
        *,
        user_id: str,
        customer_ref: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """Create a provider checkout session tagged with ``user_id``."""

    def retrieve_checkout(self, checkout_ref: str) -> CheckoutConfirmation:
        """Look up a checkout session by its provider id."""

    def retrieve_subscription(self, subscription_ref: str) -> ProviderSubscription:
        """Look up a subscription by its provider id."""

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        """Verify and decode a webhook request body."""


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


@dataclass
class SubscriptionLifecycleSync:
    """Applies payment events to user profiles and usage counters.

    This is the only writer of :class:`UserProfile` state. Usage is reset when a
    user moves into the effective pro tier; a downgrade leaves the day's count
    untouched so the free limit applies to it immediately.
    """

    store: EntitlementStore
    usage: UsageCounterService
    provider: PaymentProvider
    event_logger: BillingEventLogger
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    async def ensure_profile(self, user_id: str) -> UserProfile:
        return await self.store.ensure_profile(user_id)

    async def create_checkout_session(
        self,
        user_id: str,
        *,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        profile = await self.store.ensure_profile(user_id)
        session = await run_in_threadpool(
            self.provider.create_checkout_session,
            user_id=user_id,
            customer_ref=profile.payment_customer_ref,
            success_url=success_url,
            cancel_url=cancel_url,
        )
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.CHECKOUT_STARTED,
                user_id=user_id,
                metadata={"session_id": session.session_id},
            )
        )
        return session

    async def on_payment_confirmed(self, user_id: str, checkout_ref: str) -> UserProfile:
        """Upgrade ``user_id`` after the provider reports a paid checkout."""

        confirmation = await run_in_threadpool(self.provider.retrieve_checkout, checkout_ref)
        if confirmation.user_ref != user_id:
            logger.warning(
                "Checkout %s belongs to %s, not %s",
                checkout_ref,
                confirmation.user_ref,
                user_id,
            )
            self.event_logger.log(
                BillingAuditEvent(
                    event_type=BillingAuditEventType.OWNERSHIP_REJECTED,
                    user_id=user_id,
                    metadata={"session_id": checkout_ref},
                )
            )
            raise CheckoutOwnershipError("Checkout session does not belong to the current user")
        if not confirmation.is_paid:
            raise PaymentNotCompletedError(
                f"Payment not completed (status={confirmation.payment_status})"
            )

        customer_ref = confirmation.customer_ref
        if confirmation.subscription_ref:
            subscription = await run_in_threadpool(
                self.provider.retrieve_subscription, confirmation.subscription_ref
            )
            status = subscription.status
            period_end = subscription.current_period_end
            customer_ref = customer_ref or subscription.customer_ref
        else:
            # One-time purchase: no renewal period to track.
            status = SubscriptionStatus.ACTIVE
            period_end = None

        profile = await self.store.ensure_profile(user_id)
        return await self._apply(
            profile,
            tier=Tier.PRO,
            status=status,
            period_end=period_end,
            customer_ref=customer_ref,
            subscription_ref=confirmation.subscription_ref,
            audit_type=BillingAuditEventType.SUBSCRIPTION_ACTIVATED,
        )

    async def on_subscription_changed(
        self,
        user_id: str,
        payment_subscription_ref: str,
        status: SubscriptionStatus | str,
        period_end: Optional[datetime],
    ) -> UserProfile:
        """Record a renewal, lapse or cancellation reported by the provider."""

        status = SubscriptionStatus(status)
        profile = await self.store.ensure_profile(user_id)
        stored_ref = profile.payment_subscription_ref
        if stored_ref and stored_ref != payment_subscription_ref:
            logger.warning(
                "Subscription %s does not match stored subscription %s for user %s",
                payment_subscription_ref,
                stored_ref,
                user_id,
            )
            raise SubscriptionMismatchError("Subscription does not belong to the user")

        if status == SubscriptionStatus.CANCELED:
            tier = Tier.FREE
            audit_type = BillingAuditEventType.SUBSCRIPTION_CANCELED
        else:
            tier = Tier.PRO
            audit_type = BillingAuditEventType.SUBSCRIPTION_UPDATED

        return await self._apply(
            profile,
            tier=tier,
            status=status,
            period_end=period_end,
            subscription_ref=payment_subscription_ref,
            audit_type=audit_type,
        )

    async def handle_webhook(self, event: BillingWebhookEvent) -> bool:
        """Process a verified webhook event once. Returns ``False`` for repeats."""

        stored = await self.store.record_webhook_event(event.event_id, event.event_type)
        if not stored:
            logger.info("Skipping duplicate webhook event %s", event.event_id)
            return False

        try:
            event_type = BillingWebhookEventType(event.event_type)
        except ValueError:
            logger.debug("Ignoring unhandled webhook event type %s", event.event_type)
            return True

        try:
            await self._dispatch(event_type, event)
        except (CheckoutOwnershipError, SubscriptionMismatchError):
            raise
        except Exception:
            # Unrecord the event so the provider's redelivery is processed.
            await self.store.forget_webhook_event(event.event_id)
            raise
        return True

    async def _dispatch(self, event_type: BillingWebhookEventType, event: BillingWebhookEvent) -> None:
        if event_type == BillingWebhookEventType.CHECKOUT_SESSION_COMPLETED:
            await self._handle_checkout_completed(event)
        elif event_type == BillingWebhookEventType.INVOICE_PAYMENT_SUCCEEDED:
            await self._handle_invoice_paid(event)
        else:
            subscription = ProviderSubscription.from_payload(event.payload)
            if event_type == BillingWebhookEventType.SUBSCRIPTION_DELETED:
                subscription = subscription.model_copy(
                    update={"status": SubscriptionStatus.CANCELED}
                )
            await self._sync_subscription(event, subscription)

    async def _handle_checkout_completed(self, event: BillingWebhookEvent) -> None:
        confirmation = CheckoutConfirmation.from_payload(event.payload)
        if not confirmation.user_ref:
            logger.error("Checkout %s has no %s metadata", confirmation.session_id, USER_REFERENCE_KEY)
            return
        try:
            await self.on_payment_confirmed(confirmation.user_ref, confirmation.session_id)
        except PaymentNotCompletedError:
            # Asynchronous payment methods settle later via invoice.payment_succeeded.
            logger.info("Checkout %s completed without payment yet", confirmation.session_id)

    async def _handle_invoice_paid(self, event: BillingWebhookEvent) -> None:
        subscription_ref = event.payload.get("subscription")
        if not subscription_ref:
            logger.info("Invoice in event %s has no subscription, skipping", event.event_id)
            return
        subscription = await run_in_threadpool(
            self.provider.retrieve_subscription, str(subscription_ref)
        )
        await self._sync_subscription(event, subscription)

    async def _sync_subscription(
        self, event: BillingWebhookEvent, subscription: ProviderSubscription
    ) -> None:
        if not subscription.user_ref:
            logger.error(
                "Subscription %s in event %s has no %s metadata",
                subscription.subscription_ref,
                event.event_id,
                USER_REFERENCE_KEY,
            )
            return
        await self.on_subscription_changed(
            subscription.user_ref,
            subscription.subscription_ref,
            subscription.status,
            subscription.current_period_end,
        )

    async def _apply(
        self,
        profile: UserProfile,
        *,
        tier: Tier,
        status: SubscriptionStatus,
        period_end: Optional[datetime],
        audit_type: BillingAuditEventType,
        customer_ref: Optional[str] = None,
        subscription_ref: Optional[str] = None,
    ) -> UserProfile:
        now = self.clock()
        was_premium = profile.is_premium(now)
        updated = UserProfile(
            **{
                **profile.model_dump(),
                "tier": tier,
                "subscription_status": status,
                "current_period_end": period_end,
                "payment_customer_ref": customer_ref or profile.payment_customer_ref,
                "payment_subscription_ref": subscription_ref or profile.payment_subscription_ref,
            }
        )
        saved = await self.store.save_profile(updated)
        is_premium = saved.is_premium(now)
        logger.info(
            "Profile updated user=%s tier=%s status=%s premium=%s->%s",
            saved.user_id,
            saved.tier.value,
            saved.subscription_status.value,
            was_premium,
            is_premium,
        )

        if is_premium and not was_premium:
            await self.usage.reset_usage(saved.user_id, FEATURE_CATALOG.keys())
            self.event_logger.log(
                BillingAuditEvent(
                    event_type=BillingAuditEventType.USAGE_RESET,
                    user_id=saved.user_id,
                    subscription_ref=saved.payment_subscription_ref,
                )
            )

        self.event_logger.log(
            BillingAuditEvent(
                event_type=audit_type,
                user_id=saved.user_id,
                subscription_ref=saved.payment_subscription_ref,
                metadata={"status": saved.subscription_status.value, "tier": saved.tier.value},
            )
        )
        return saved


__all__ = [
    "BillingEventLogger",
    "PaymentProvider",
    "SubscriptionLifecycleSync",
]
