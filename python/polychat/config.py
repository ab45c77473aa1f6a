"""Application settings loaded from environment variables.

Environment Configuration:
    POLYCHAT_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (required)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (liveness markers, worker broker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Auth Configuration (required in all environments):
    AUTH_JWKS_URL: Full URL to the identity provider JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences

LLM Gateway Configuration:
    OPENROUTER_API_KEY: Gateway API key (required in staging/prod)
    OPENROUTER_BASE_URL: Gateway base URL
    STREAM_BASE_URL: Public base URL of the streaming endpoint
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - AUTH_JWKS_URL, AUTH_ISSUER, AUTH_AUDIENCES are required in all environments
    - OPENROUTER_API_KEY is required in staging and prod only
    """

    polychat_env: Environment = Field(default=Environment.LOCAL, alias="POLYCHAT_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Auth settings (required in all environments)
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    # LLM gateway (all providers are reached through OpenRouter)
    openrouter_api_key: str | None = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_BASE_URL"
    )
    stream_base_url: str = Field(default="http://localhost:8000", alias="STREAM_BASE_URL")

    # Provider feature flags
    enable_openai: bool = Field(default=True, alias="ENABLE_OPENAI")
    enable_anthropic: bool = Field(default=True, alias="ENABLE_ANTHROPIC")
    enable_google: bool = Field(default=True, alias="ENABLE_GOOGLE")
    enable_deepseek: bool = Field(default=True, alias="ENABLE_DEEPSEEK")

    # Auxiliary model calls (classification, titles, prompt enhancement)
    classifier_model: str = Field(
        default="google/gemini-2.0-flash-lite-001", alias="CLASSIFIER_MODEL"
    )
    assist_model: str = Field(default="google/gemini-2.0-flash-lite-001", alias="ASSIST_MODEL")

    # Generation parameters
    generation_temperature: float = Field(default=0.7, alias="GENERATION_TEMPERATURE")
    generation_max_tokens: int = Field(default=4096, alias="GENERATION_MAX_TOKENS")
    llm_timeout_s: int = Field(default=45, alias="LLM_TIMEOUT_S")

    # Streaming
    stream_poll_interval_s: float = Field(default=0.25, alias="STREAM_POLL_INTERVAL_S")
    stream_stale_minutes: int = Field(default=5, alias="STREAM_STALE_MINUTES")

    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for all environments."""
        missing_auth = []
        if not self.auth_jwks_url:
            missing_auth.append("AUTH_JWKS_URL")
        if not self.auth_issuer:
            missing_auth.append("AUTH_ISSUER")
        if not self.auth_audiences:
            missing_auth.append("AUTH_AUDIENCES")

        if missing_auth:
            raise ValueError(f"Missing required auth settings: {', '.join(missing_auth)}.")

        # The gateway key is optional locally so the API can boot without LLM access
        if self.polychat_env in (Environment.STAGING, Environment.PROD):
            if not self.openrouter_api_key:
                raise ValueError(
                    f"OPENROUTER_API_KEY is required for POLYCHAT_ENV={self.polychat_env.value}"
                )

        if self.stream_poll_interval_s <= 0:
            raise ValueError("STREAM_POLL_INTERVAL_S must be positive")

        return self

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.auth_audiences:
            return [a.strip() for a in self.auth_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.auth_issuer:
            return self.auth_issuer.rstrip("/")
        return None

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
