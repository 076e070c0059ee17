from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )
    internal_api_allowlist: str = Field(
        default="127.0.0.1/32,::1/128",
        alias="INTERNAL_API_ALLOWLIST",
    )
    internal_api_trusted_proxies: str = Field(default="", alias="INTERNAL_API_TRUSTED_PROXIES")

    database_url: str = Field(alias="DATABASE_URL")
    redis_url: str = Field(alias="REDIS_URL")

    celery_broker_url: str = Field(alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(alias="CELERY_RESULT_BACKEND")

    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(
        default=300,
        alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS",
    )

    account_lock_backend: str = Field(default="postgres", alias="ACCOUNT_LOCK_BACKEND")
    account_lock_timeout_ms: int = Field(default=2000, alias="ACCOUNT_LOCK_TIMEOUT_MS")
    account_lock_poll_ms: int = Field(default=50, alias="ACCOUNT_LOCK_POLL_MS")

    webhook_dedup_window_hours: int = Field(default=24, alias="WEBHOOK_DEDUP_WINDOW_HOURS")
    payment_event_processing_ttl_seconds: int = Field(
        default=300,
        alias="PAYMENT_EVENT_PROCESSING_TTL_SECONDS",
    )
    payment_event_task_max_retries: int = Field(default=7, alias="PAYMENT_EVENT_TASK_MAX_RETRIES")
    payment_event_task_retry_backoff_max_seconds: int = Field(
        default=300,
        alias="PAYMENT_EVENT_TASK_RETRY_BACKOFF_MAX_SECONDS",
    )
    payment_event_enqueue_timeout_ms: int = Field(
        default=250,
        alias="PAYMENT_EVENT_ENQUEUE_TIMEOUT_MS",
    )
    payment_event_recovery_batch_size: int = Field(
        default=100,
        alias="PAYMENT_EVENT_RECOVERY_BATCH_SIZE",
    )
    payment_event_recovery_schedule_seconds: int = Field(
        default=300,
        alias="PAYMENT_EVENT_RECOVERY_SCHEDULE_SECONDS",
    )

    workspace_api_url: str = Field(default="http://localhost:7860", alias="WORKSPACE_API_URL")
    workspace_api_username: str = Field(default="", alias="WORKSPACE_API_USERNAME")
    workspace_api_password: str = Field(default="", alias="WORKSPACE_API_PASSWORD")
    workspace_api_timeout_seconds: float = Field(
        default=10.0,
        alias="WORKSPACE_API_TIMEOUT_SECONDS",
    )
    provisioning_task_max_retries: int = Field(default=5, alias="PROVISIONING_TASK_MAX_RETRIES")
    provisioning_task_retry_backoff_max_seconds: int = Field(
        default=600,
        alias="PROVISIONING_TASK_RETRY_BACKOFF_MAX_SECONDS",
    )

    trial_expiry_batch_size: int = Field(default=200, alias="TRIAL_EXPIRY_BATCH_SIZE")
    trial_expiry_max_batches: int = Field(default=50, alias="TRIAL_EXPIRY_MAX_BATCHES")
    trial_expiry_schedule_seconds: int = Field(default=300, alias="TRIAL_EXPIRY_SCHEDULE_SECONDS")

    retention_audit_events_days: int = Field(default=180, alias="RETENTION_AUDIT_EVENTS_DAYS")
    retention_cleanup_batch_size: int = Field(default=5000, alias="RETENTION_CLEANUP_BATCH_SIZE")
    retention_cleanup_max_batches_per_table: int = Field(
        default=50,
        alias="RETENTION_CLEANUP_MAX_BATCHES_PER_TABLE",
    )
    retention_cleanup_max_runtime_seconds: int = Field(
        default=120,
        alias="RETENTION_CLEANUP_MAX_RUNTIME_SECONDS",
    )
    retention_cleanup_schedule_hour_utc: int = Field(
        default=3,
        alias="RETENTION_CLEANUP_SCHEDULE_HOUR_UTC",
    )
    retention_cleanup_schedule_minute_utc: int = Field(
        default=15,
        alias="RETENTION_CLEANUP_SCHEDULE_MINUTE_UTC",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
