"""Runtime configuration for the metering service."""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

BILLING_PROVIDERS = {"sandbox", "stripe"}
USAGE_STORES = {"memory", "postgres"}


@dataclass(frozen=True)
class DatabaseConfig:
    host: str
    port: int
    name: str
    user: str
    password: str
    connect_timeout: int

    def asyncpg_kwargs(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "database": self.name,
            "user": self.user,
            "password": self.password,
        }

    def psycopg2_kwargs(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.name,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }


@dataclass(frozen=True)
class MeteringConfig:
    """Settings for the metering API, read once at startup."""

    database: DatabaseConfig
    jwt_secret_key: str
    jwt_algorithm: str
    session_cookie_name: str
    billing_provider: str
    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    stripe_price_id: Optional[str]
    sandbox_signing_secret: str
    app_base_url: str
    usage_store: str
    store_read_attempts: int
    log_level: str
    cors_origins: Tuple[str, ...]


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def _choice(value: Optional[str], *, allowed: set[str], default: str, name: str) -> str:
    normalized = (value or default).strip().lower() or default
    if normalized not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}, got {value!r}")
    return normalized


def _split_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def load_config(env: Optional[Mapping[str, str]] = None) -> MeteringConfig:
    """Load :class:`MeteringConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    database = DatabaseConfig(
        host=env_mapping.get("DB_HOST", "127.0.0.1"),
        port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        name=env_mapping.get("DB_NAME", "metering_db"),
        user=env_mapping.get("DB_USER", "metering_user"),
        password=env_mapping.get("DB_PASSWORD", "metering_pass"),
        connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT", "5")),
    )

    jwt_secret_key = env_mapping.get("JWT_SECRET_KEY", "dev-secret-change-me")
    billing_provider = _choice(
        env_mapping.get("BILLING_PROVIDER"),
        allowed=BILLING_PROVIDERS,
        default="sandbox",
        name="BILLING_PROVIDER",
    )
    stripe_secret_key = env_mapping.get("STRIPE_SECRET_KEY") or None
    if billing_provider == "stripe" and not stripe_secret_key:
        raise ValueError("STRIPE_SECRET_KEY is required when BILLING_PROVIDER=stripe")

    cors_origins = _split_csv(env_mapping.get("CORS_ORIGINS")) or ("http://localhost:5173",)

    return MeteringConfig(
        database=database,
        jwt_secret_key=jwt_secret_key,
        jwt_algorithm=env_mapping.get("JWT_ALGORITHM", "HS256"),
        session_cookie_name=env_mapping.get("SESSION_COOKIE_NAME", "session"),
        billing_provider=billing_provider,
        stripe_secret_key=stripe_secret_key,
        stripe_webhook_secret=env_mapping.get("STRIPE_WEBHOOK_SECRET") or None,
        stripe_price_id=env_mapping.get("STRIPE_PRICE_ID") or None,
        sandbox_signing_secret=env_mapping.get("SANDBOX_WEBHOOK_SECRET") or jwt_secret_key,
        app_base_url=env_mapping.get("APP_BASE_URL", "http://localhost:5173").rstrip("/"),
        usage_store=_choice(
            env_mapping.get("USAGE_STORE"),
            allowed=USAGE_STORES,
            default="memory",
            name="USAGE_STORE",
        ),
        store_read_attempts=max(1, _to_int(env_mapping.get("STORE_READ_ATTEMPTS"), default=2)),
        log_level=(env_mapping.get("LOG_LEVEL") or "INFO").strip().upper(),
        cors_origins=cors_origins,
    )


__all__ = ["DatabaseConfig", "MeteringConfig", "load_config"]
