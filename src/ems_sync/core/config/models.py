"""
Configuration data models for ems-sync.

These models define the structure of .ems-sync.json and
~/.config/ems-sync/config.json files, with validation via Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RemoteConfig(BaseModel):
    """
    Remote endpoint settings.

    Without ``endpoint_url`` the client runs offline: writes are applied
    locally only and refreshes do nothing.
    """
    endpoint_url: Optional[str] = Field(
        default=None,
        description="URL of the spreadsheet web-hook endpoint"
    )
    fetch_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound on a snapshot fetch, retries included"
    )
    write_timeout_seconds: float = Field(
        default=180.0,
        gt=0,
        description="Upper bound on a single write (writes may carry uploads)"
    )
    fetch_retries: int = Field(
        default=2,
        ge=0,
        description="Retries of a failed fetch on transient errors"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Initial backoff delay between fetch retries"
    )

    @field_validator("endpoint_url")
    @classmethod
    def blank_endpoint_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class SchedulerConfig(BaseModel):
    """Background refresh settings."""
    refresh_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between background refreshes"
    )


class CacheConfig(BaseModel):
    """Local cache settings."""
    directory: Optional[Path] = Field(
        default=None,
        description="Cache directory (defaults to $XDG_DATA_HOME/ems-sync)"
    )


class SyncConfig(BaseModel):
    """
    Complete ems-sync configuration.

    Example:
        >>> config = SyncConfig(remote={"endpoint_url": "https://script.example/exec"})
        >>> config.is_offline
        False
        >>> config.scheduler.refresh_interval_seconds
        300.0
    """
    model_config = ConfigDict(extra="ignore")

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @property
    def is_offline(self) -> bool:
        return self.remote.endpoint_url is None
