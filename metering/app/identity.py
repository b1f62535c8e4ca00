"""Session identity for metered endpoints.

Session tokens are HS256 JWTs whose ``sub`` claim is the user id. They arrive
in the session cookie or an ``Authorization: Bearer`` header.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from ..app_context import AppContext, get_app_context

DEFAULT_TOKEN_TTL = timedelta(days=7)


class SessionUser(BaseModel):
    id: str


def create_session_token(
    *,
    subject: str,
    secret_key: str,
    algorithm: str = "HS256",
    expires_delta: Optional[timedelta] = None,
) -> str:
    payload = {
        "sub": subject,
        "exp": datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL),
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def resolve_user_from_session_token(
    session_token: str,
    *,
    secret_key: str,
    algorithm: str = "HS256",
) -> Optional[SessionUser]:
    try:
        payload = jwt.decode(session_token, secret_key, algorithms=[algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return SessionUser(id=str(subject))


def _extract_token(request: Request, cookie_name: str) -> Optional[str]:
    token = request.cookies.get(cookie_name)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_current_user(
    request: Request,
    context: AppContext = Depends(get_app_context),
) -> SessionUser:
    token = _extract_token(request, context.config.session_cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(
        token,
        secret_key=context.config.jwt_secret_key,
        algorithm=context.config.jwt_algorithm,
    )
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


__all__ = [
    "SessionUser",
    "create_session_token",
    "get_current_user",
    "resolve_user_from_session_token",
]
