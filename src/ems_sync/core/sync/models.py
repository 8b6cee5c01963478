"""
Result models for sync operations.

Public engine operations never raise for sync failures; they return one of
these models instead. ``error_kind`` carries the ``SyncErrorKind`` of the
failure so callers can branch without string matching.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ems_sync.core.errors import SyncErrorKind


class SyncIndicator(str, Enum):
    """What a status badge should show."""

    ONLINE = "online"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"


class WriteResult(BaseModel):
    """
    Outcome of a single write.

    Example:
        >>> result = WriteResult(success=False, action="upsertPost",
        ...                      error_kind=SyncErrorKind.BUSY, message="Write in progress")
        >>> result.summary()
        'upsertPost failed (sync-busy): Write in progress'
    """

    success: bool = Field(description="Whether the server confirmed the write")
    action: str = Field(description="Action name sent to the endpoint")
    error_kind: SyncErrorKind | None = Field(default=None)
    message: str = Field(default="", description="Human-readable result message")
    record: dict[str, Any] | None = Field(
        default=None,
        description="Canonical record as merged into state (wire names)",
    )
    offline: bool = Field(default=False, description="Applied locally only, no endpoint configured")
    refreshed: bool = Field(default=False, description="A corrective refresh ran after a failure")

    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def summary(self) -> str:
        if not self.success:
            kind = f" ({self.error_kind.value})" if self.error_kind else ""
            return f"{self.action} failed{kind}: {self.message}"

        parts = [f"{self.action} succeeded"]
        if self.offline:
            parts.append("applied locally (offline)")
        if self.record is not None:
            record_id = next((v for k, v in self.record.items() if k.endswith("_ID")), None)
            if record_id is not None:
                parts.append(f"id {record_id}")
        if self.message:
            parts.append(self.message)
        return ", ".join(parts)


class RefreshResult(BaseModel):
    """Outcome of one snapshot refresh."""

    success: bool = Field(description="Whether a new snapshot replaced the state")
    skipped: bool = Field(default=False, description="Refresh did not run (write or refresh in progress)")
    offline: bool = Field(default=False)
    error_kind: SyncErrorKind | None = Field(default=None)
    message: str = Field(default="")
    counts: dict[str, int] = Field(default_factory=dict, description="Rows per table after the refresh")
    dangling_references: int = Field(default=0, ge=0)
    synced_at: datetime | None = Field(default=None)

    def summary(self) -> str:
        if self.offline:
            return "refresh skipped: no endpoint configured"
        if self.skipped:
            return f"refresh skipped: {self.message}"
        if not self.success:
            kind = f" ({self.error_kind.value})" if self.error_kind else ""
            return f"refresh failed{kind}: {self.message}"
        total = sum(self.counts.values())
        parts = [f"refresh succeeded, {total} records"]
        if self.dangling_references:
            parts.append(f"{self.dangling_references} dangling references")
        return ", ".join(parts)


__all__ = ["RefreshResult", "SyncIndicator", "WriteResult"]
