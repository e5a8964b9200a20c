"""Backup artifact and backup run result schemas."""

from datetime import datetime
from pathlib import Path

from pydantic import Field

from ..models.base import BaseModelConfig


class BackupArtifact(BaseModelConfig):
    """A single backup file on disk."""

    name: str = Field(..., min_length=1, description="File name")
    path: Path = Field(..., description="Absolute path of the artifact")
    size_bytes: int = Field(..., ge=0, description="File size in bytes")
    timestamp: datetime = Field(..., description="Creation time parsed from the name")
    compressed: bool = Field(..., description="Whether the artifact is gzip compressed")


class BackupResult(BaseModelConfig):
    """Outcome of one backup run."""

    success: bool = Field(...)
    file_path: Path | None = Field(default=None)
    error: str | None = Field(default=None)


class BackupStats(BaseModelConfig):
    """Aggregate figures over all artifacts in the backup directory."""

    total_backups: int = Field(default=0, ge=0)
    total_size_bytes: int = Field(default=0, ge=0)
    oldest_backup: datetime | None = Field(default=None)
    newest_backup: datetime | None = Field(default=None)


class BackupListItem(BackupArtifact):
    """Artifact with a human readable size for admin listings."""

    size_formatted: str = Field(...)


class BackupStatsView(BackupStats):
    """Backup statistics with a human readable total size."""

    total_size_formatted: str = Field(...)
