"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from polychat.config import Environment, Settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "sqlite://",
        "POLYCHAT_ENV": "test",
        "AUTH_JWKS_URL": "https://auth.example.test/.well-known/jwks.json",
        "AUTH_ISSUER": "https://auth.example.test/",
        "AUTH_AUDIENCES": "polychat, polychat-web ,",
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestAuthSettings:
    def test_audiences_are_split_and_trimmed(self):
        assert _make_settings().audience_list == ["polychat", "polychat-web"]

    def test_issuer_trailing_slash_is_stripped(self):
        assert _make_settings().normalized_issuer == "https://auth.example.test"

    @pytest.mark.parametrize("missing", ["AUTH_JWKS_URL", "AUTH_ISSUER", "AUTH_AUDIENCES"])
    def test_auth_settings_are_required(self, missing):
        with pytest.raises(ValidationError, match=missing):
            _make_settings(**{missing: ""})


class TestGatewaySettings:
    def test_defaults(self):
        s = _make_settings()
        assert s.openrouter_base_url == "https://openrouter.ai/api/v1"
        assert s.stream_base_url == "http://localhost:8000"
        assert s.llm_timeout_s == 45
        assert s.enable_openai and s.enable_anthropic and s.enable_google and s.enable_deepseek

    def test_key_optional_in_test(self):
        assert _make_settings().openrouter_api_key is None

    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_key_required_in_deployed_envs(self, env):
        with pytest.raises(ValidationError, match="OPENROUTER_API_KEY"):
            _make_settings(POLYCHAT_ENV=env)

    def test_key_accepted_in_prod(self):
        s = _make_settings(POLYCHAT_ENV="prod", OPENROUTER_API_KEY="sk-or-test")
        assert s.polychat_env == Environment.PROD

    def test_provider_flag_override(self):
        assert _make_settings(ENABLE_DEEPSEEK="false").enable_deepseek is False


class TestStreamingSettings:
    def test_defaults(self):
        s = _make_settings()
        assert s.stream_poll_interval_s == 0.25
        assert s.stream_stale_minutes == 5

    @pytest.mark.parametrize("value", [0, -1])
    def test_poll_interval_must_be_positive(self, value):
        with pytest.raises(ValidationError, match="STREAM_POLL_INTERVAL_S"):
            _make_settings(STREAM_POLL_INTERVAL_S=value)


class TestCelerySettings:
    def test_broker_falls_back_to_redis_url(self):
        s = _make_settings(REDIS_URL="redis://localhost:6379/0")
        assert s.effective_celery_broker_url == "redis://localhost:6379/0"
        assert s.effective_celery_result_backend == "redis://localhost:6379/0"

    def test_explicit_broker_wins(self):
        s = _make_settings(
            REDIS_URL="redis://localhost:6379/0", CELERY_BROKER_URL="redis://broker:6379/1"
        )
        assert s.effective_celery_broker_url == "redis://broker:6379/1"
