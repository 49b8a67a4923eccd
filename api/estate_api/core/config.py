from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "estate-listings-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    scheduler_enabled: bool = True
    post_expiry_hour: int = 2
    post_expiry_minute: int = 0
    payment_expiry_interval_seconds: float = 3600.0
    payment_expiry_startup_delay_seconds: float = 5.0
    payment_grace_hours: int = 24
    default_package_duration_days: int = 30
    otel_enabled: bool = True
    otel_service_name: str = "estate-listings-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: dict[str, str] = {}
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="EL_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
