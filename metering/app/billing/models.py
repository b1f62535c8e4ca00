"""Domain models for the billing system."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..entitlements.models import SubscriptionStatus

USER_REFERENCE_KEY = "userId"

_PROVIDER_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


def subscription_status_from_provider(raw: Optional[str]) -> SubscriptionStatus:
    """Map a payment provider status string onto :class:`SubscriptionStatus`."""

    if not raw:
        return SubscriptionStatus.NONE
    return _PROVIDER_STATUS_MAP.get(str(raw).lower(), SubscriptionStatus.NONE)


def _parse_timestamp(value: object) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise TypeError("Unsupported timestamp value")


def _safe_metadata(value: object) -> Dict[str, str]:
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    return {}


def _reference(value: object) -> Optional[str]:
    # Expanded provider objects carry the id inside a mapping.
    if isinstance(value, Mapping):
        value = value.get("id")
    return str(value) if value else None


class BillingWebhookEventType(str, Enum):
    """Webhook event types that the application reacts to."""

    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class CheckoutSession(BaseModel):
    """Return value of a checkout session creation request."""

    session_id: str
    url: str
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class CheckoutConfirmation(BaseModel):
    """Provider view of a checkout session after the user returns."""

    session_id: str
    user_ref: Optional[str] = None
    payment_status: str = "unpaid"
    mode: str = "subscription"
    customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_paid(self) -> bool:
        return self.payment_status in {"paid", "no_payment_required"}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CheckoutConfirmation":
        return cls(
            session_id=str(payload["id"]),
            user_ref=_safe_metadata(payload.get("metadata")).get(USER_REFERENCE_KEY),
            payment_status=str(payload.get("payment_status") or "unpaid"),
            mode=str(payload.get("mode") or "subscription"),
            customer_ref=_reference(payload.get("customer")),
            subscription_ref=_reference(payload.get("subscription")),
        )


class ProviderSubscription(BaseModel):
    """Normalized subscription state reported by the billing provider."""

    subscription_ref: str
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    customer_ref: Optional[str] = None
    user_ref: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("current_period_end", mode="before")
    @classmethod
    def _coerce_period_end(cls, value: object) -> Optional[datetime]:
        return _parse_timestamp(value)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ProviderSubscription":
        period_end = payload.get("current_period_end")
        if period_end is None:
            # Newer API versions report the period on the subscription items.
            items = payload.get("items") or {}
            data = items.get("data") if isinstance(items, Mapping) else None
            if data:
                period_end = data[0].get("current_period_end")
        return cls(
            subscription_ref=str(payload["id"]),
            status=subscription_status_from_provider(payload.get("status")),
            current_period_end=period_end,
            customer_ref=_reference(payload.get("customer")),
            user_ref=_safe_metadata(payload.get("metadata")).get(USER_REFERENCE_KEY),
        )


class BillingWebhookEvent(BaseModel):
    """Verified webhook payload; ``payload`` is the event's data object."""

    event_id: str
    event_type: str
    payload: Dict[str, Any]
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_envelope(cls, envelope: Mapping[str, Any]) -> "BillingWebhookEvent":
        data = envelope.get("data") or {}
        obj = data.get("object") if isinstance(data, Mapping) else None
        return cls(
            event_id=str(envelope["id"]),
            event_type=str(envelope["type"]),
            payload=dict(obj or {}),
        )


class BillingAuditEventType(str, Enum):
    """Audit event categories emitted by the billing subsystem."""

    CHECKOUT_STARTED = "checkout_started"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    USAGE_RESET = "usage_reset"
    OWNERSHIP_REJECTED = "ownership_rejected"


class BillingAuditEvent(BaseModel):
    """Structured audit event for analytics and notifications."""

    event_type: BillingAuditEventType
    user_id: str
    subscription_ref: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)
