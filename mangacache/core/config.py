"""Application configuration (settings and environment).

Single source of truth for all configuration. Uses pydantic-settings
with .env support. Cross-field rules (distinct layer databases, sane
timeouts) are validated at load time.
"""

from functools import lru_cache

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment and .env.

    Every field has a default so the cache core can start against a local
    Redis with no configuration. The admin surface stays closed until
    SECRET_KEY is set.
    """

    # App
    app_name: str = "manga-cache"
    app_version: str = "1.0.0"
    debug: bool = False

    # Security (admin surface and caller identity for per-user HTTP cache variants)
    secret_key: SecretStr = SecretStr("")
    algorithm: str = "HS256"
    admin_role: str = "admin"

    # CORS
    allowed_origins: str = "http://localhost:3000,http://localhost:8080"

    # Request / middleware
    request_id_header: str = "X-Request-ID"

    # Relational data layer (optional): enables the SQLAlchemy query executor
    database_url: str | None = None
    database_echo: bool = False

    # Redis backing store: REDIS_URL wins over host/port when set.
    redis_enabled: bool = True
    redis_url: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: SecretStr | None = None
    redis_l1_db: int = 1
    redis_l2_db: int = 0
    redis_max_connections: int = 20
    redis_connect_timeout_seconds: float = 10.0
    redis_command_timeout_seconds: float = 5.0

    # Tiered cache engine
    cache_compression_threshold: int = 1024  # bytes
    cache_default_ttl: int = 3600
    cache_invalidation_batch_size: int = 100
    cache_cleanup_interval_seconds: int = 3600  # 0 disables the periodic sweep

    # Derived-image variant cache
    image_cache_enabled: bool = True
    image_cleanup_max_age_ms: int = 30 * 86400 * 1000  # 30 days
    image_preprocess_dir: str = "uploads"

    # Query-result cache and HTTP cache
    query_cache_enabled: bool = True
    http_cache_enabled: bool = True

    # OpenTelemetry
    telemetry_enabled: bool = False
    telemetry_exporter: str = "console"
    telemetry_otlp_endpoint: str | None = None
    telemetry_sample_rate: float = 1.0
    telemetry_environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_cache_layers(self) -> "Settings":
        """Validate cache layer and timeout settings.

        - L1 and L2 must use different Redis databases (independent namespaces).
        - Timeouts, the compression threshold, the invalidation batch size
          and the image cleanup age must be positive.
        """
        if self.redis_l1_db == self.redis_l2_db:
            raise ValueError(
                f"REDIS_L1_DB and REDIS_L2_DB must differ, both are {self.redis_l1_db}. "
                "Each cache layer needs its own Redis database."
            )
        if self.redis_connect_timeout_seconds <= 0 or self.redis_command_timeout_seconds <= 0:
            raise ValueError("Redis connect and command timeouts must be positive.")
        if self.cache_compression_threshold <= 0:
            raise ValueError(
                f"CACHE_COMPRESSION_THRESHOLD must be positive, got: {self.cache_compression_threshold}"
            )
        if self.cache_invalidation_batch_size <= 0:
            raise ValueError("CACHE_INVALIDATION_BATCH_SIZE must be positive.")
        if self.image_cleanup_max_age_ms <= 0:
            raise ValueError(
                f"IMAGE_CLEANUP_MAX_AGE_MS must be positive, got: {self.image_cleanup_max_age_ms}"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings (single instance per process).

    Validation runs on first call, not at import time. In tests, call
    get_settings.cache_clear() before overriding env vars so the next
    get_settings() uses the new values.

    Returns:
        Loaded and validated Settings instance.
    """
    return Settings()
