from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from metering.app import identity
from metering.config import load_config


class FakeRequest:
    def __init__(self, *, cookies=None, headers=None) -> None:
        self.cookies = cookies or {}
        self.headers = headers or {}


@pytest.fixture
def context():
    return SimpleNamespace(config=load_config({"JWT_SECRET_KEY": "test-secret"}))


def test_resolve_user_from_valid_token_returns_subject():
    token = identity.create_session_token(subject="user-42", secret_key="test-secret")

    user = identity.resolve_user_from_session_token(token, secret_key="test-secret")

    assert user is not None
    assert user.id == "user-42"


def test_resolve_user_from_expired_token_returns_none():
    token = identity.create_session_token(
        subject="user-42", secret_key="test-secret", expires_delta=timedelta(minutes=-5)
    )

    assert identity.resolve_user_from_session_token(token, secret_key="test-secret") is None


def test_resolve_user_from_garbage_token_returns_none():
    assert identity.resolve_user_from_session_token("not-a-valid-token", secret_key="test-secret") is None


def test_get_current_user_missing_token_raises_401(context):
    with pytest.raises(HTTPException) as exc:
        identity.get_current_user(FakeRequest(), context=context)

    assert exc.value.status_code == 401


def test_get_current_user_reads_session_cookie(context):
    token = identity.create_session_token(subject="user-7", secret_key="test-secret")
    request = FakeRequest(cookies={context.config.session_cookie_name: token})

    assert identity.get_current_user(request, context=context).id == "user-7"


def test_get_current_user_reads_bearer_header(context):
    token = identity.create_session_token(subject="user-8", secret_key="test-secret")
    request = FakeRequest(headers={"Authorization": f"Bearer {token}"})

    assert identity.get_current_user(request, context=context).id == "user-8"


def test_get_current_user_rejects_non_bearer_scheme(context):
    token = identity.create_session_token(subject="user-8", secret_key="test-secret")
    request = FakeRequest(headers={"Authorization": f"Basic {token}"})

    with pytest.raises(HTTPException):
        identity.get_current_user(request, context=context)
