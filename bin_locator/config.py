"""Service configuration pulled from environment variables via pydantic."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from utils.logging_utils import get_tagged_logger, mask_url
logger = get_tagged_logger(__name__, tag="config")


class Settings(BaseSettings):
    """Environment-driven configuration for the bin locator service."""
    model_config = SettingsConfigDict(env_prefix="BINLOC_", extra="ignore")

    live_source: str = "memory"  # options: memory, sql
    live_database_url: str | None = None
    monitoring_table: str = "monitoring"

    backup_store: str = "memory"  # options: memory, redis, sql
    backup_redis_url: str | None = None
    backup_key_prefix: str = "gps_backup:"
    backup_database_url: str | None = None
    backup_table: str = "gps_backups"

    backup_interval_seconds: float = 3600.0
    freshness_window_seconds: float | None = None
    sweep_max_workers: int = 8
    sweep_timeout_seconds: float = 300.0
    scheduler_enabled: bool = True

    api_key: str | None = None

    @field_validator("live_source", "backup_store", mode="after")
    @classmethod
    def lowercase_backend(cls, v: str) -> str:
        """Backend names are matched case-insensitively."""
        return v.strip().lower()

    @field_validator("backup_interval_seconds", "sweep_timeout_seconds", "sweep_max_workers", mode="after")
    @classmethod
    def must_be_positive(cls, v):
        """Reject zero or negative intervals, timeouts and pool sizes."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("freshness_window_seconds", mode="after")
    @classmethod
    def window_positive_or_unset(cls, v: float | None) -> float | None:
        """A freshness window is either unset or a positive number of seconds."""
        if v is not None and v <= 0:
            raise ValueError("freshness_window_seconds must be positive when set")
        return v


settings = Settings()


if __name__ == "__main__":
    logger.setLevel("DEBUG")
    dumped = settings.model_dump()
    for key in ("live_database_url", "backup_redis_url", "backup_database_url"):
        dumped[key] = mask_url(dumped[key])
    dumped["api_key"] = "***" if dumped["api_key"] else None
    logger.debug(f"Loaded settings: {dumped}")
