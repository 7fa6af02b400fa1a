import pytest
from pydantic import ValidationError

from ratekeeper.app.core.config import Settings
from ratekeeper.app.services.distributed_rate_limiter import QuotaDimension, RateLimiterConfig


def test_defaults_match_gemini_free_tier() -> None:
    settings = Settings(_env_file=None)

    assert settings.api_id == "gemini-api"
    assert settings.rate_limit_rpm == 5
    assert settings.rate_limit_tpm == 250_000
    assert settings.rate_limit_rpd == 25
    assert settings.rate_limit_daily_reset_timezone == "UTC"
    assert settings.rate_limit_enable_fallback is True
    assert settings.store_backend == "memory"


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_TPM", "1000000")
    monkeypatch.setenv("RATE_LIMIT_ENABLE_FALLBACK", "false")
    monkeypatch.setenv("STORE_BACKEND", "redis")
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://db/ratekeeper")

    settings = Settings(_env_file=None)

    assert settings.rate_limit_tpm == 1_000_000
    assert settings.rate_limit_enable_fallback is False
    assert settings.store_backend == "redis"
    assert settings.database_url == "postgresql+asyncpg://db/ratekeeper"


@pytest.mark.parametrize(
    ("env", "value"),
    [
        ("RATE_LIMIT_RPM", "0"),
        ("RATE_LIMIT_MINUTE_WINDOW_SECONDS", "0"),
        ("RATE_LIMIT_MAX_CONFLICT_RETRIES", "-1"),
        ("RATE_LIMIT_MAX_STORE_RETRIES", "50"),
        ("RATE_LIMIT_CONFLICT_BACKOFF_SECONDS", "-0.1"),
        ("RATE_LIMIT_STORE_TIMEOUT_SECONDS", "0"),
        ("RATE_LIMIT_DAILY_RESET_TIMEZONE", "Mars/Olympus_Mons"),
        ("STORE_BACKEND", "dynamodb"),
    ],
)
def test_invalid_values_rejected(monkeypatch, env: str, value: str) -> None:
    monkeypatch.setenv(env, value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_limiter_config_from_settings(monkeypatch) -> None:
    monkeypatch.setenv("API_ID", "translate-api")
    monkeypatch.setenv("RATE_LIMIT_RPD", "1000")
    monkeypatch.setenv("RATE_LIMIT_DAILY_RESET_TIMEZONE", "America/Los_Angeles")
    monkeypatch.setenv("RATE_LIMIT_MAX_CONFLICT_RETRIES", "5")
    monkeypatch.setenv("RATE_LIMIT_BUCKET_TTL_DAYS", "2")

    config = RateLimiterConfig.from_settings(Settings(_env_file=None))

    assert config.bucket_key(QuotaDimension.RPD) == "translate-api-rpd"
    rpd = config.dimensions[QuotaDimension.RPD]
    assert rpd.max_capacity == 1000
    assert rpd.daily is True
    assert config.dimensions[QuotaDimension.TPM].daily is False
    assert config.dimensions[QuotaDimension.TPM].refill_rate == pytest.approx(250_000 / 60)
    assert config.daily_reset_timezone == "America/Los_Angeles"
    assert config.conflict_backoff.max_retries == 5
    assert config.bucket_ttl_seconds == 2 * 86_400
