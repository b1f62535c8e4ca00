"""Application wiring for the billing service."""
from __future__ import annotations

import logging

from ...config import MeteringConfig
from ..billing import BillingAuditEvent, BillingEventLogger, PaymentProvider
from ..billing.providers import LocalSandboxPaymentProvider, StripePaymentProvider


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        logger.info(
            "Billing event %s user=%s subscription=%s metadata=%s",
            event.event_type.value,
            event.user_id,
            event.subscription_ref,
            event.metadata,
        )


def build_payment_provider(config: MeteringConfig) -> PaymentProvider:
    if config.billing_provider == "stripe":
        return StripePaymentProvider(
            secret_key=config.stripe_secret_key or "",
            webhook_secret=config.stripe_webhook_secret or "",
            price_id=config.stripe_price_id or "",
        )
    logger.warning("Using the local sandbox payment provider; no real payments are taken")
    return LocalSandboxPaymentProvider(
        config.sandbox_signing_secret,
        base_url=config.app_base_url,
    )


__all__ = ["LoggingBillingEventLogger", "build_payment_provider"]
