"""Errors raised while synchronizing subscription state."""
from __future__ import annotations


class CheckoutOwnershipError(PermissionError):
    """A checkout session or subscription belongs to a different user."""


class SubscriptionMismatchError(PermissionError):
    """A subscription event references a subscription the user does not hold."""


class PaymentNotCompletedError(ValueError):
    """The checkout session has not been paid."""


class WebhookVerificationError(ValueError):
    """A webhook payload failed signature verification or could not be parsed."""


class CheckoutNotFoundError(LookupError):
    """The payment provider does not know the requested checkout session."""


class PaymentProviderError(RuntimeError):
    """The payment provider could not be reached or rejected the request."""


__all__ = [
    "CheckoutNotFoundError",
    "CheckoutOwnershipError",
    "PaymentNotCompletedError",
    "PaymentProviderError",
    "SubscriptionMismatchError",
    "WebhookVerificationError",
]
