"""Payment provider integrations used by subscription lifecycle sync."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional
from uuid import uuid4

import stripe

from ..entitlements.models import SubscriptionStatus
from .exceptions import CheckoutNotFoundError, PaymentProviderError, WebhookVerificationError
from .models import (
    USER_REFERENCE_KEY,
    BillingWebhookEvent,
    CheckoutConfirmation,
    CheckoutSession,
    ProviderSubscription,
)

logger = logging.getLogger("billing")


def _to_payload(obj: Any) -> Dict[str, Any]:
    # ``str`` of a StripeObject is its JSON serialization.
    return json.loads(str(obj))


class StripePaymentProvider:
    """Stripe-backed provider. Every method performs blocking network I/O."""

    def __init__(
        self,
        *,
        secret_key: str,
        webhook_secret: str,
        price_id: str,
    ) -> None:
        if not secret_key:
            raise ValueError("STRIPE_SECRET_KEY must be configured for the stripe provider")
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._price_id = price_id

    def create_checkout_session(
        self,
        *,
        user_id: str,
        customer_ref: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": self._price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata": {USER_REFERENCE_KEY: user_id},
            "subscription_data": {"metadata": {USER_REFERENCE_KEY: user_id}},
            "api_key": self._secret_key,
        }
        if customer_ref:
            params["customer"] = customer_ref
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            logger.error("Stripe checkout creation failed for user %s: %s", user_id, exc)
            raise PaymentProviderError("Unable to create checkout session") from exc
        payload = _to_payload(session)
        expires_at = payload.get("expires_at")
        return CheckoutSession(
            session_id=str(payload["id"]),
            url=str(payload.get("url") or ""),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc) if expires_at else None,
        )

    def retrieve_checkout(self, checkout_ref: str) -> CheckoutConfirmation:
        try:
            session = stripe.checkout.Session.retrieve(checkout_ref, api_key=self._secret_key)
        except stripe.InvalidRequestError as exc:
            raise CheckoutNotFoundError(checkout_ref) from exc
        except stripe.StripeError as exc:
            logger.error("Stripe checkout lookup failed for %s: %s", checkout_ref, exc)
            raise PaymentProviderError("Unable to retrieve checkout session") from exc
        return CheckoutConfirmation.from_payload(_to_payload(session))

    def retrieve_subscription(self, subscription_ref: str) -> ProviderSubscription:
        try:
            subscription = stripe.Subscription.retrieve(subscription_ref, api_key=self._secret_key)
        except stripe.StripeError as exc:
            logger.error("Stripe subscription lookup failed for %s: %s", subscription_ref, exc)
            raise PaymentProviderError("Unable to retrieve subscription") from exc
        return ProviderSubscription.from_payload(_to_payload(subscription))

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        if not self._webhook_secret:
            raise WebhookVerificationError("Webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing webhook signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("Webhook signature verification failed") from exc
        except ValueError as exc:
            raise WebhookVerificationError("Webhook payload is not valid JSON") from exc
        return BillingWebhookEvent.from_envelope(_to_payload(event))


class LocalSandboxPaymentProvider:
    """Minimal provider implementation for local development and tests.

    Checkout sessions and subscriptions live in memory. Webhook payloads are
    JSON envelopes shaped like the provider's, signed with HMAC-SHA256 over the
    raw body and sent as a hex digest.
    """

    def __init__(
        self,
        signing_secret: str,
        *,
        base_url: str = "http://localhost:8000",
        period_days: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not signing_secret:
            raise ValueError("signing_secret must be provided")
        self._secret = signing_secret.encode("utf-8")
        self._base_url = base_url.rstrip("/")
        self._period = timedelta(days=period_days)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.sessions: Dict[str, CheckoutConfirmation] = {}
        self.subscriptions: Dict[str, ProviderSubscription] = {}

    def create_checkout_session(
        self,
        *,
        user_id: str,
        customer_ref: Optional[str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        session_id = f"cs_sandbox_{uuid4().hex}"
        self.sessions[session_id] = CheckoutConfirmation(
            session_id=session_id,
            user_ref=user_id,
            customer_ref=customer_ref or f"cus_sandbox_{uuid4().hex[:12]}",
        )
        return CheckoutSession(
            session_id=session_id,
            url=f"{self._base_url}/sandbox/checkout/{session_id}",
            expires_at=self._clock() + timedelta(minutes=30),
        )

    def complete_checkout(self, session_id: str) -> CheckoutConfirmation:
        """Simulate the user paying for ``session_id``."""

        session = self.retrieve_checkout(session_id)
        subscription_ref = session.subscription_ref or f"sub_sandbox_{uuid4().hex}"
        self.subscriptions[subscription_ref] = ProviderSubscription(
            subscription_ref=subscription_ref,
            status=SubscriptionStatus.ACTIVE,
            current_period_end=self._clock() + self._period,
            customer_ref=session.customer_ref,
            user_ref=session.user_ref,
        )
        completed = session.model_copy(
            update={"payment_status": "paid", "subscription_ref": subscription_ref}
        )
        self.sessions[session_id] = completed
        return completed

    def update_subscription(
        self,
        subscription_ref: str,
        *,
        status: SubscriptionStatus,
        current_period_end: Optional[datetime] = None,
    ) -> ProviderSubscription:
        subscription = self.retrieve_subscription(subscription_ref)
        updated = subscription.model_copy(
            update={
                "status": status,
                "current_period_end": current_period_end or subscription.current_period_end,
            }
        )
        self.subscriptions[subscription_ref] = updated
        return updated

    def retrieve_checkout(self, checkout_ref: str) -> CheckoutConfirmation:
        try:
            return self.sessions[checkout_ref]
        except KeyError as exc:
            raise CheckoutNotFoundError(checkout_ref) from exc

    def retrieve_subscription(self, subscription_ref: str) -> ProviderSubscription:
        try:
            return self.subscriptions[subscription_ref]
        except KeyError as exc:
            raise PaymentProviderError(f"Unknown subscription {subscription_ref}") from exc

    def sign(self, payload: bytes) -> str:
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def build_event(self, event_type: str, obj: Mapping[str, Any]) -> bytes:
        """Serialize a webhook envelope the way the provider would send it."""

        envelope = {
            "id": f"evt_sandbox_{uuid4().hex}",
            "type": event_type,
            "data": {"object": dict(obj)},
        }
        return json.dumps(envelope, sort_keys=True, separators=(",", ":")).encode("utf-8")

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> BillingWebhookEvent:
        if not signature or not hmac.compare_digest(self.sign(payload), signature):
            raise WebhookVerificationError("Webhook signature verification failed")
        try:
            envelope = json.loads(payload)
            return BillingWebhookEvent.from_envelope(envelope)
        except (ValueError, KeyError, TypeError) as exc:
            raise WebhookVerificationError("Webhook payload is malformed") from exc


__all__ = ["LocalSandboxPaymentProvider", "StripePaymentProvider"]
