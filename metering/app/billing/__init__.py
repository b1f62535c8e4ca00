"""Billing domain package keeping subscription state in sync with payments."""

from .exceptions import (
    CheckoutNotFoundError,
    CheckoutOwnershipError,
    PaymentNotCompletedError,
    PaymentProviderError,
    SubscriptionMismatchError,
    WebhookVerificationError,
)
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    CheckoutConfirmation,
    CheckoutSession,
    ProviderSubscription,
    subscription_status_from_provider,
)
from .service import BillingEventLogger, PaymentProvider, SubscriptionLifecycleSync

__all__ = [
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingWebhookEvent",
    "BillingWebhookEventType",
    "CheckoutConfirmation",
    "CheckoutNotFoundError",
    "CheckoutOwnershipError",
    "CheckoutSession",
    "PaymentNotCompletedError",
    "PaymentProvider",
    "PaymentProviderError",
    "ProviderSubscription",
    "SubscriptionLifecycleSync",
    "SubscriptionMismatchError",
    "WebhookVerificationError",
    "subscription_status_from_provider",
]
