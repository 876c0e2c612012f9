"""Worker configuration loaded from environment variables and `.env` files."""

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkerSettings(BaseSettings):
    """Runtime configuration for the event worker and HTTP trigger.

    Every field can be overridden with an ``EVENTPULSE_``-prefixed variable,
    e.g. ``EVENTPULSE_BATCH_SIZE=100``.
    """

    model_config = SettingsConfigDict(env_prefix="EVENTPULSE_", env_file=".env", extra="ignore")

    process_interval: float = Field(default=5.0, gt=0, description="Seconds between batches")
    cleanup_interval: float = Field(
        default=3600.0, gt=0, description="Seconds between retention sweeps"
    )
    batch_size: int = Field(default=50, ge=1, le=1000, description="Events fetched per batch")
    retention_days: float = Field(
        default=7, ge=0, description="Age after which PROCESSED events are deleted"
    )
    max_attempts: int = Field(default=3, ge=1, description="Attempts before terminal FAILED")
    lock_ttl: float = Field(default=60.0, gt=0, description="Per-event lock lease in seconds")
    handler_timeout: float = Field(
        default=30.0, gt=0, description="Seconds a handler may run"
    )
    shutdown_grace_period: float = Field(
        default=2.0, ge=0, description="Seconds to let loops drain on shutdown"
    )
    cleanup_page_size: int = Field(default=500, ge=1, description="Rows deleted per page")
    database_path: str = Field(default="eventpulse.db", description="SQLite event log")
    redis_url: str = Field(default="redis://localhost:6379", description="Lock store URL")
    lock_prefix: str = Field(default="event:lock:", description="Prefix for lock keys")
    internal_api_token: SecretStr | None = Field(
        default=None, description="Bearer token for the HTTP trigger"
    )
    log_level: str = Field(default="INFO", description="Application log level")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        upper_value = value.upper()
        if upper_value not in allowed:
            msg = f"Invalid log level '{value}'. Choose one of: {', '.join(sorted(allowed))}."
            raise ValueError(msg)
        return upper_value

    @model_validator(mode="after")
    def _lock_outlives_handler(self) -> "WorkerSettings":
        if self.lock_ttl <= self.handler_timeout:
            raise ValueError(
                f"lock_ttl ({self.lock_ttl}s) must exceed handler_timeout "
                f"({self.handler_timeout}s) or a slow handler could lose its lock"
            )
        return self
