"""Application settings loaded from environment variables.

Environment Configuration:
    FORTUNIA_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (required)
    FORTUNIA_INTERNAL_SECRET: Secret for operator webhooks (required in staging/prod)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (quota cache, Celery default)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Auth Configuration (required in all environments):
    SUPABASE_JWKS_URL: Full URL to Supabase JWKS endpoint
    SUPABASE_ISSUER: Expected JWT issuer (trailing slash stripped)
    SUPABASE_AUDIENCES: Comma-separated list of allowed audiences

Inference Configuration:
    GEMINI_API_KEY: Platform key for the Gemini API
    GEMINI_MODEL: Model used for readings and horoscopes
    INFERENCE_*: Retry policy for model calls
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
    - SUPABASE_JWKS_URL, SUPABASE_ISSUER, SUPABASE_AUDIENCES are required in all environments
    - FORTUNIA_INTERNAL_SECRET is required in staging and prod only
    - Inference backoff must be positive and bounded
    """

    fortunia_env: Environment = Field(default=Environment.LOCAL, alias="FORTUNIA_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    fortunia_internal_secret: str | None = Field(default=None, alias="FORTUNIA_INTERNAL_SECRET")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Supabase auth settings (required in all environments)
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Supabase Storage settings
    supabase_url: str | None = Field(default=None, alias="SUPABASE_URL")
    supabase_service_key: str | None = Field(default=None, alias="SUPABASE_SERVICE_KEY")
    storage_bucket: str = Field(default="fortune-images-prod", alias="STORAGE_BUCKET")

    # Gemini inference
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.0-flash-exp", alias="GEMINI_MODEL")
    inference_max_attempts: int = Field(default=3, ge=1, alias="INFERENCE_MAX_ATTEMPTS")
    inference_attempt_timeout_s: float = Field(
        default=30.0, gt=0, alias="INFERENCE_ATTEMPT_TIMEOUT_S"
    )
    inference_backoff_base_s: float = Field(default=1.0, gt=0, alias="INFERENCE_BACKOFF_BASE_S")
    inference_backoff_max_s: float = Field(default=8.0, gt=0, alias="INFERENCE_BACKOFF_MAX_S")

    # Entitlements
    free_daily_quota: int = Field(default=3, ge=0, alias="FREE_DAILY_QUOTA")
    quota_cache_ttl_s: int = Field(default=300, ge=1, alias="QUOTA_CACHE_TTL_S")

    # Media fetching limits
    max_image_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_IMAGE_BYTES")  # 10 MB
    media_fetch_timeout_s: float = Field(default=10.0, gt=0, alias="MEDIA_FETCH_TIMEOUT_S")

    # Retention sweep
    retention_days: int = Field(default=30, ge=1, alias="RETENTION_DAYS")
    retention_batch_size: int = Field(default=100, ge=1, alias="RETENTION_BATCH_SIZE")
    retention_list_limit: int = Field(default=1000, ge=1, alias="RETENTION_LIST_LIMIT")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for all environments."""
        missing_auth = []
        if not self.supabase_jwks_url:
            missing_auth.append("SUPABASE_JWKS_URL")
        if not self.supabase_issuer:
            missing_auth.append("SUPABASE_ISSUER")
        if not self.supabase_audiences:
            missing_auth.append("SUPABASE_AUDIENCES")

        if missing_auth:
            raise ValueError(
                f"Missing required Supabase auth settings: {', '.join(missing_auth)}. "
                "Set these environment variables or add them to .env."
            )

        # FORTUNIA_INTERNAL_SECRET is required only in staging/prod
        if self.fortunia_env in (Environment.STAGING, Environment.PROD):
            if not self.fortunia_internal_secret:
                raise ValueError(
                    f"FORTUNIA_INTERNAL_SECRET is required for FORTUNIA_ENV={self.fortunia_env.value}"
                )

        if self.inference_backoff_max_s < self.inference_backoff_base_s:
            raise ValueError("INFERENCE_BACKOFF_MAX_S must be >= INFERENCE_BACKOFF_BASE_S")

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether operator webhooks must present the internal secret header."""
        return self.fortunia_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.supabase_audiences:
            return [a.strip() for a in self.supabase_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.supabase_issuer:
            return self.supabase_issuer.rstrip("/")
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
