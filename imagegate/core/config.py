from pydantic_settings import BaseSettings, SettingsConfigDict

MB = 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PostgreSQL (credit ledger)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "imagegate"
    postgres_password: str = "changeme"
    postgres_db: str = "imagegate"

    @property
    def postgres_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Redis (guest usage counters)
    redis_url: str = "redis://localhost:6379/0"

    # Inference provider (Replicate predictions API)
    replicate_api_token: str = ""
    replicate_api_url: str = "https://api.replicate.com/v1"
    provider_timeout_seconds: float = 60.0
    provider_poll_interval_seconds: float = 1.0
    output_ttl_seconds: int = 3600  # Provider output URLs stay valid ~1h

    # IP hashing: raw IPs never reach the counter store
    ip_hash_salt: str = "default-salt"

    # Guest limits
    global_daily_limit: int = 500  # ~$0.85/day worst-case spend
    ip_hourly_limit: int = 10
    ip_daily_limit: int = 20
    fingerprints_per_ip_limit: int = 5
    guest_max_file_size_mb: int = 2
    guest_scale: int = 2
    guest_model: str = "real-esrgan"

    # Upload limits per tier
    free_max_upload_mb: int = 5
    paid_max_upload_mb: int = 25

    # Retry policy for provider calls
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 5000

    # Compensating refunds retry on transient ledger errors with a short backoff
    refund_max_retries: int = 3
    refund_base_delay_ms: int = 200

    # Per-user limit on authenticated processing
    upscale_rate_limit: str = "5/minute"

    # App
    app_env: str = "development"
    app_debug: bool = True
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # CORS
    allowed_origins: str = "*"  # comma-separated

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable
    app_version: str = ""  # reported to Sentry as the release

    @property
    def guest_max_file_bytes(self) -> int:
        return self.guest_max_file_size_mb * MB

    def max_upload_bytes(self, tier: str) -> int:
        """Byte limit for an authenticated upload; any paid tier gets the larger cap."""
        if tier == "free":
            return self.free_max_upload_mb * MB
        return self.paid_max_upload_mb * MB


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.app_env == "production":
        if not settings.replicate_api_token:
            errors.append("REPLICATE_API_TOKEN must be set")
        if settings.ip_hash_salt in ("default-salt", ""):
            errors.append("IP_HASH_SALT must be set to a secret random value")
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if settings.global_daily_limit <= 0:
        errors.append("GLOBAL_DAILY_LIMIT must be positive")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
