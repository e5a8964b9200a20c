"""Restore and recovery test schemas."""

from datetime import datetime
from pathlib import Path

from pydantic import Field

from ..models.base import BaseModelConfig


class RestoreOptions(BaseModelConfig):
    """Parameters of a restore run."""

    backup_path: Path = Field(..., description="Artifact to replay")
    drop_existing: bool = Field(default=False, description="Drop the target first")
    create_database: bool = Field(default=False, description="Create the target first")
    verbose: bool = Field(
        default=False,
        description="Stop on the first SQL error instead of running quietly",
    )
    target_database: str | None = Field(
        default=None,
        min_length=1,
        description="Restore into this database instead of the configured one",
    )


class RestoreResult(BaseModelConfig):
    """Outcome of a restore run."""

    success: bool = Field(...)
    error: str | None = Field(default=None)
    duration_ms: float | None = Field(default=None, ge=0)


class RecoveryTestResult(BaseModelConfig):
    """Ephemeral report produced by a recovery test.

    ``records_estimate`` is a heuristic: INSERT/COPY markers found in a sample
    of the dump head multiplied by ten. It is not a row count.
    ``restore_verified`` is only true when a dry-run restore ran and succeeded.
    """

    success: bool = Field(...)
    backup_file: str = Field(...)
    test_duration_ms: float = Field(..., ge=0)
    records_estimate: int = Field(default=0, ge=0)
    has_data: bool = Field(default=False)
    restore_verified: bool = Field(default=False)
    errors: list[str] = Field(default_factory=list)


class RecoveryPoint(BaseModelConfig):
    """A restorable artifact, timestamped by its modification time."""

    name: str = Field(..., min_length=1)
    path: Path = Field(...)
    size_bytes: int = Field(..., ge=0)
    timestamp: datetime = Field(...)


class RecoveryPointView(RecoveryPoint):
    """Recovery point with a human readable size."""

    size_formatted: str = Field(...)
