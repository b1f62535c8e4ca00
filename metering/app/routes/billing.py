"""API routes exposing billing functionality."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status

from ...app_context import AppContext, get_app_context
from ..billing import (
    CheckoutNotFoundError,
    CheckoutOwnershipError,
    PaymentNotCompletedError,
    PaymentProviderError,
    SubscriptionMismatchError,
    WebhookVerificationError,
)
from ..entitlements import StoreUnavailableError
from ..identity import SessionUser, get_current_user
from ..schemas.billing import (
    CheckoutSessionResponse,
    SubscriptionResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)

logger = logging.getLogger("billing")

router = APIRouter(prefix="/api/billing", tags=["billing"])


def _store_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Subscription data is temporarily unavailable",
        headers={"Retry-After": "5"},
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    *,
    current_user: SessionUser = Depends(get_current_user),
    context: AppContext = Depends(get_app_context),
) -> SubscriptionResponse:
    try:
        profile = await context.lifecycle.ensure_profile(str(current_user.id))
    except StoreUnavailableError as exc:
        raise _store_unavailable() from exc
    return SubscriptionResponse.from_profile(profile, now=context.clock())


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    *,
    current_user: SessionUser = Depends(get_current_user),
    context: AppContext = Depends(get_app_context),
) -> CheckoutSessionResponse:
    base_url = context.config.app_base_url
    try:
        session = await context.lifecycle.create_checkout_session(
            str(current_user.id),
            success_url=f"{base_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/pricing",
        )
    except StoreUnavailableError as exc:
        raise _store_unavailable() from exc
    except PaymentProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return CheckoutSessionResponse.from_checkout(session)


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
async def verify_payment(
    payload: VerifyPaymentRequest,
    *,
    current_user: SessionUser = Depends(get_current_user),
    context: AppContext = Depends(get_app_context),
) -> VerifyPaymentResponse:
    """Confirm a returning checkout and upgrade the caller."""

    try:
        profile = await context.lifecycle.on_payment_confirmed(
            str(current_user.id), payload.session_id
        )
    except CheckoutOwnershipError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except PaymentNotCompletedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except CheckoutNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown checkout session") from exc
    except PaymentProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise _store_unavailable() from exc

    now = context.clock()
    return VerifyPaymentResponse(
        success=True,
        is_premium=profile.is_premium(now),
        profile=SubscriptionResponse.from_profile(profile, now=now),
    )


@router.post("/webhook", status_code=status.HTTP_204_NO_CONTENT)
async def receive_webhook(
    request: Request,
    *,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    context: AppContext = Depends(get_app_context),
) -> Response:
    body = await request.body()
    try:
        event = context.provider.parse_webhook(body, stripe_signature)
    except WebhookVerificationError as exc:
        logger.warning("Rejected billing webhook: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        await context.lifecycle.handle_webhook(event)
    except (CheckoutOwnershipError, SubscriptionMismatchError) as exc:
        # Redelivery cannot fix an ownership conflict, so acknowledge it.
        logger.error("Webhook event %s rejected: %s", event.event_id, exc)
    except PaymentProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise _store_unavailable() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
