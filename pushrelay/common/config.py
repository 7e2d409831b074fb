"""Central environment-driven settings shared by the relay services.

Each service process loads this once at startup. Behavior is controlled by
environment variables (see `.env.example`).
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "unknown-service"
    log_level: str = "INFO"
    postgres_dsn: str
    kafka_bootstrap_servers: str = "kafka:9092"
    redis_url: str = "redis://redis:6379/0"
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    dispatch_topic: str = "dispatch.created"
    dispatch_consumer_group: str = "relay-dispatch-watcher"
    dispatch_lock_ttl_seconds: int = Field(default=60, gt=0)
    gateway_send_timeout_seconds: float = Field(default=30.0, gt=0)
    outbox_poll_interval_seconds: float = 0.5
    firebase_credentials_path: str | None = None
    fcm_default_channel_id: str = "high_importance_channel"
    fcm_default_sound: str = "default"
    fcm_default_priority: str = "high"
    fcm_default_badge: int = 1
    retention_days: int = Field(default=7, gt=0)
    sweep_batch_limit: int = Field(default=500, gt=0)
    sweep_hour_utc: int = Field(default=0, ge=0, le=23)
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @model_validator(mode="after")
    def send_fits_inside_lock(self) -> "CommonSettings":
        # Sends must finish while the per-record lock is still held.
        if self.gateway_send_timeout_seconds >= self.dispatch_lock_ttl_seconds:
            raise ValueError(
                "gateway_send_timeout_seconds must be below dispatch_lock_ttl_seconds "
                f"({self.gateway_send_timeout_seconds} >= {self.dispatch_lock_ttl_seconds})"
            )
        return self


settings = CommonSettings()
