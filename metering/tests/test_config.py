import pytest

from metering.config import load_config


def test_defaults_use_sandbox_billing_and_memory_store():
    config = load_config({})

    assert config.billing_provider == "sandbox"
    assert config.usage_store == "memory"
    assert config.store_read_attempts == 2
    assert config.session_cookie_name == "session"
    assert config.cors_origins == ("http://localhost:5173",)
    assert config.database.asyncpg_kwargs()["database"] == "metering_db"
    assert config.database.psycopg2_kwargs()["dbname"] == "metering_db"


def test_values_are_read_from_environment():
    config = load_config(
        {
            "DB_HOST": "db.internal",
            "DB_PORT": "6543",
            "DB_CONNECT_TIMEOUT": "2.5",
            "USAGE_STORE": "Postgres",
            "STORE_READ_ATTEMPTS": "0",
            "LOG_LEVEL": "debug",
            "CORS_ORIGINS": "https://a.example, https://b.example",
            "APP_BASE_URL": "https://app.example/",
        }
    )

    assert config.database.host == "db.internal"
    assert config.database.port == 6543
    assert config.database.connect_timeout == 3
    assert config.usage_store == "postgres"
    assert config.store_read_attempts == 1
    assert config.log_level == "DEBUG"
    assert config.cors_origins == ("https://a.example", "https://b.example")
    assert config.app_base_url == "https://app.example"


def test_stripe_provider_requires_secret_key():
    with pytest.raises(ValueError):
        load_config({"BILLING_PROVIDER": "stripe"})


def test_unknown_choice_is_rejected():
    with pytest.raises(ValueError):
        load_config({"USAGE_STORE": "redis"})


def test_invalid_integer_is_rejected():
    with pytest.raises(ValueError):
        load_config({"DB_PORT": "five"})
