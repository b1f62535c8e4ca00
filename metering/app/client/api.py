"""HTTP client for the usage endpoints."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from ..entitlements.models import FeatureId

logger = logging.getLogger("metering.client")


class UsageApiError(RuntimeError):
    """The usage endpoint could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ServerUsage:
    count: int
    limit: int
    remaining: int
    is_limit_reached: bool
    is_premium: bool


@dataclass(frozen=True)
class IncrementResult:
    success: bool
    count: int
    limit: int
    limit_reached: bool
    is_premium: bool


class UsageApi(Protocol):
    async def fetch_usage(self, feature_id: FeatureId) -> ServerUsage:
        ...

    async def increment(self, feature_id: FeatureId) -> IncrementResult:
        ...


class HttpUsageApi:
    """Talks to ``/api/usage`` with a bearer session token."""

    def __init__(
        self,
        base_url: str,
        *,
        session_token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session_token = session_token
        self.timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.session_token:
                headers["Authorization"] = f"Bearer {self.session_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpUsageApi":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch_usage(self, feature_id: FeatureId) -> ServerUsage:
        body = await self._request("GET", f"/api/usage/{FeatureId(feature_id).value}")
        try:
            return ServerUsage(
                count=int(body["count"]),
                limit=int(body["limit"]),
                remaining=int(body["remaining"]),
                is_limit_reached=bool(body["isLimitReached"]),
                is_premium=bool(body["isPremium"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UsageApiError("Unexpected usage payload") from exc

    async def increment(self, feature_id: FeatureId) -> IncrementResult:
        body = await self._request("POST", f"/api/usage/{FeatureId(feature_id).value}/increment")
        try:
            return IncrementResult(
                success=bool(body["success"]),
                count=int(body["count"]),
                limit=int(body["limit"]),
                limit_reached=bool(body["limitReached"]),
                is_premium=bool(body["isPremium"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise UsageApiError("Unexpected increment payload") from exc

    async def _request(self, method: str, path: str) -> Dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, path)
        except httpx.HTTPError as exc:
            logger.warning("Usage request %s %s failed: %s", method, path, exc)
            raise UsageApiError(f"Usage service unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise UsageApiError(
                f"Usage service returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UsageApiError("Usage service returned invalid JSON") from exc


__all__ = ["HttpUsageApi", "IncrementResult", "ServerUsage", "UsageApi", "UsageApiError"]
