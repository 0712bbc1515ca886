"""Settings and configuration."""
from typing import List, Optional
from pydantic_settings import BaseSettings

DEV_PEPPER = "dev-pepper-change-in-prod"


class Settings(BaseSettings):
    # Core
    mode: str = "dev"  # dev, prod
    reporting_env: str = "dev"
    log_level: str = "INFO"

    # Stores
    store_backend: str = "memory"  # memory, redis
    redis_url: str = "redis://localhost:6379/0"
    store_timeout_seconds: float = 2.0
    object_store_path: Optional[str] = None

    # Security
    admin_secret: Optional[str] = None
    api_key_pepper: str = DEV_PEPPER
    api_key_pepper_id: str = "p1"
    pdf_signing_secret: Optional[str] = None
    pdf_signing_previous_secrets: List[str] = []
    base_url: str = "https://reporting-api.rapidtools.dev"

    # Rate Limiting
    rate_limit_enabled: bool = True
    rate_limit_dev_fail_open: bool = False
    rate_limit_window_seconds: int = 3600
    report_send_limit: int = 10
    csv_upload_limit: int = 20
    registration_limit: int = 3

    # Idempotency
    # Retention is independent of the rate-limit window but should cover at least one window
    idempotency_ttl_seconds: int = 86400
    idempotency_lock_ttl_seconds: int = 60
    idempotency_wait_timeout_seconds: float = 10.0
    idempotency_poll_interval_seconds: float = 0.1

    # Signed URLs
    signed_url_default_ttl_seconds: int = 900  # 15 Minutes
    signed_url_max_ttl_seconds: int = 3600  # 1 Hour

    # Credentials
    rotation_max_attempts: int = 3

    # Uploads
    max_csv_bytes: int = 5 * 1024 * 1024
    max_csv_rows: int = 100_000

    # Observability
    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: Optional[str] = None

    model_config = {
        "env_file": ".env",
        "extra": "ignore"
    }

    @property
    def is_prod(self) -> bool:
        return self.mode.lower() == "prod"


settings = Settings()


def get_settings() -> Settings:
    """Dependency hook so routes and tests can swap configuration."""
    return settings
