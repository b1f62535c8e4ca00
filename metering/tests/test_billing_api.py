from __future__ import annotations

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from metering.app.billing.providers import LocalSandboxPaymentProvider
from metering.app.entitlements import FeatureId, InMemoryEntitlementStore, Tier, UsageRecord
from metering.app.identity import create_session_token
from metering.app_context import build_app_context
from metering.config import load_config
from metering.main import create_app

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)
TODAY = date(2024, 3, 15)


@pytest.fixture
def config():
    return load_config({"JWT_SECRET_KEY": "test-secret", "APP_BASE_URL": "http://app.test"})


@pytest.fixture
def provider() -> LocalSandboxPaymentProvider:
    return LocalSandboxPaymentProvider("webhook-secret", clock=lambda: NOW)


@pytest.fixture
def context(config, provider):
    return build_app_context(
        config,
        store=InMemoryEntitlementStore(),
        provider=provider,
        clock=lambda: NOW,
    )


@pytest.fixture
def client(context) -> TestClient:
    return TestClient(create_app(context=context))


def _auth(config, user_id: str = "user-1") -> dict:
    token = create_session_token(subject=user_id, secret_key=config.jwt_secret_key)
    return {"Authorization": f"Bearer {token}"}


def test_subscription_endpoint_creates_free_profile(client, config, context) -> None:
    response = client.get("/api/billing/subscription", headers=_auth(config))

    assert response.status_code == 200
    body = response.json()
    assert body["userId"] == "user-1"
    assert body["tier"] == "free"
    assert body["effectiveTier"] == "free"
    assert body["isPremium"] is False
    assert "user-1" in context.store.profiles


def test_checkout_and_verify_payment_upgrade_user(client, config, context, provider) -> None:
    context.store.usage[("user-1", FeatureId.SEARCH, TODAY)] = UsageRecord(
        user_id="user-1", feature_id=FeatureId.SEARCH, usage_date=TODAY, count=20
    )

    checkout = client.post("/api/billing/checkout-session", headers=_auth(config))
    assert checkout.status_code == 200
    session_id = checkout.json()["sessionId"]
    assert checkout.json()["url"].endswith(session_id)

    unpaid = client.post(
        "/api/billing/verify-payment", json={"sessionId": session_id}, headers=_auth(config)
    )
    assert unpaid.status_code == 400

    provider.complete_checkout(session_id)
    verified = client.post(
        "/api/billing/verify-payment", json={"sessionId": session_id}, headers=_auth(config)
    )

    assert verified.status_code == 200
    assert verified.json()["success"] is True
    assert verified.json()["isPremium"] is True
    assert verified.json()["profile"]["tier"] == Tier.PRO.value
    assert context.store.usage[("user-1", FeatureId.SEARCH, TODAY)].count == 0

    usage = client.get("/api/usage/search", headers=_auth(config))
    assert usage.json()["limit"] == 100


def test_verify_payment_for_another_users_session_is_forbidden(client, config, provider) -> None:
    checkout = client.post("/api/billing/checkout-session", headers=_auth(config, "user-1"))
    session_id = checkout.json()["sessionId"]
    provider.complete_checkout(session_id)

    response = client.post(
        "/api/billing/verify-payment",
        json={"sessionId": session_id},
        headers=_auth(config, "user-2"),
    )

    assert response.status_code == 403


def test_verify_unknown_session_is_404(client, config) -> None:
    response = client.post(
        "/api/billing/verify-payment", json={"sessionId": "cs_nope"}, headers=_auth(config)
    )

    assert response.status_code == 404


def test_signed_webhook_downgrades_subscription(client, config, context, provider) -> None:
    checkout = client.post("/api/billing/checkout-session", headers=_auth(config))
    completed = provider.complete_checkout(checkout.json()["sessionId"])
    client.post(
        "/api/billing/verify-payment",
        json={"sessionId": completed.session_id},
        headers=_auth(config),
    )

    payload = provider.build_event(
        "customer.subscription.deleted",
        {
            "id": completed.subscription_ref,
            "status": "canceled",
            "metadata": {"userId": "user-1"},
        },
    )
    response = client.post(
        "/api/billing/webhook",
        content=payload,
        headers={"Stripe-Signature": provider.sign(payload)},
    )

    assert response.status_code == 204
    assert context.store.profiles["user-1"].tier == Tier.FREE


def test_webhook_with_bad_signature_is_rejected(client, provider, context) -> None:
    payload = provider.build_event("customer.subscription.deleted", {"id": "sub_1"})

    response = client.post(
        "/api/billing/webhook",
        content=payload,
        headers={"Stripe-Signature": "not-a-signature"},
    )

    assert response.status_code == 400
    assert context.store.webhook_events == set()


def test_billing_endpoints_require_authentication(client) -> None:
    assert client.get("/api/billing/subscription").status_code == 401
    assert client.post("/api/billing/checkout-session").status_code == 401
