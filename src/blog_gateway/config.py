"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The generation service key uses SecretStr to prevent accidental logging.
    Database URL is assembled from individual components to match
    the official PostgreSQL Docker image environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"
    # --- CORS ---
    cors_allowed_origins: list[str] = ["*"]
    cors_allow_credentials: bool = False
    cors_allowed_methods: list[str] = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]
    cors_allowed_headers: list[str] = [
        "Authorization",
        "Content-Type",
        "X-Correlation-Id",
    ]

    # --- PostgreSQL ---
    postgres_user: str = "blog_gateway"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "blog_gateway"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Assemble database URL from components.

        Uses psycopg v3 driver which supports both sync (create_engine)
        and async (create_async_engine) modes natively.
        """
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"

    # --- Generation service ---
    generation_service_url: str = "http://localhost:8100"
    generation_service_api_key: SecretStr | None = None
    generation_service_timeout: float = 120.0

    # --- Gateway ---
    enable_caching: bool = True
    cache_max_entries: int = 500
    cache_evict_buffer: int = 50
    enable_retry: bool = True
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    default_timeout: float = 30.0
    create_post_timeout: float = 300.0
    max_request_size: int = 1024 * 1024
    max_request_size_posts: int = 10 * 1024 * 1024
    rate_limit_window_seconds: int = 60
    domain_cache_ttl: float = 300.0

    # --- Pipeline feature flags ---
    enable_image_generation: bool = True
    enable_llm_snippets: bool = True
    enable_seo_optimization: bool = True
    enable_product_mentions: bool = True
    enable_internal_links: bool = True

    # --- Plans ---
    trial_days: int = 14

    # --- Worker ---
    worker_max_jobs: int = 4
    worker_job_timeout: int = 600
    worker_max_tries: int = 3

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def effective_retry_attempts(self) -> int:
        """Attempts per external call; 1 when retry is disabled."""
        return self.retry_max_attempts if self.enable_retry else 1


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from blog_gateway.config import get_settings
        settings = get_settings()
    """
    return Settings()


settings = get_settings()
