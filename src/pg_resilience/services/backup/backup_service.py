# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Database backup service: dump, compress, verify, upload, prune."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from attrs import field, frozen
from beartype import beartype

from ...core.alerts import AlertNotifier
from ...core.config import Settings
from ...core.connection import ConnectionDescriptor
from ...core.errors import IntegrityError
from ...core.logging_utils import get_logger
from ...core.process import ToolRunner
from ...schemas.backup import BackupArtifact, BackupResult, BackupStats
from .compression import compress_file, verify_gzip
from .naming import (
    EPOCH,
    backup_filename,
    is_backup_filename,
    is_compressed,
    parse_backup_timestamp,
)
from .retention import RetentionPolicy, select_for_pruning
from .storage import ObjectStorageUploader

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@frozen
class BackupConfig:
    """Backup behaviour switches."""

    retention: RetentionPolicy = field(factory=RetentionPolicy)
    compression: bool = field(default=True)
    upload_to_storage: bool = field(default=True)
    notify_on_failure: bool = field(default=True)


class BackupService:
    """Create and manage plain-SQL dumps of the primary database.

    A run is: dump -> (compress) -> verify -> (upload) -> prune. Verification
    gates everything after it; a failed run deletes whatever it wrote and is
    reported as ``BackupResult(success=False)`` rather than raised.
    """

    def __init__(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        *,
        config: BackupConfig | None = None,
        runner: ToolRunner | None = None,
        uploader: ObjectStorageUploader | None = None,
        notifier: AlertNotifier | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize backup service with its collaborators."""
        self.connection = connection
        self.backup_dir = backup_dir
        self.config = config or BackupConfig()
        self._runner = runner or ToolRunner()
        self._uploader = uploader
        self._notifier = notifier or AlertNotifier()
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        runner: ToolRunner | None = None,
        notifier: AlertNotifier | None = None,
    ) -> "BackupService":
        """Build the service from environment configuration."""
        config = BackupConfig(
            retention=RetentionPolicy(
                daily_count=settings.backup_retention_daily,
                weekly_count=settings.backup_retention_weekly,
                monthly_count=settings.backup_retention_monthly,
            ),
            compression=settings.backup_compression,
            upload_to_storage=settings.backup_upload_enabled,
            notify_on_failure=settings.backup_notify_on_failure,
        )
        uploader = (
            ObjectStorageUploader.from_settings(settings)
            if settings.backup_upload_enabled
            else None
        )
        return cls(
            ConnectionDescriptor.parse(settings.database_url),
            Path(settings.backup_dir),
            config=config,
            runner=runner,
            uploader=uploader,
            notifier=notifier,
        )

    @beartype
    async def create_backup(self) -> BackupResult:
        """Perform a full database backup."""
        backup_path = self.backup_dir / backup_filename(self._clock())
        written: list[Path] = []

        try:
            await asyncio.to_thread(self.backup_dir.mkdir, parents=True, exist_ok=True)

            logger.info(
                "Starting database backup",
                extra={"backup": backup_path.name, "database": self.connection.database},
            )
            written.append(backup_path)
            await self._dump(backup_path)
            logger.info("Database dump created", extra={"artifact": str(backup_path)})

            final_path = backup_path
            if self.config.compression:
                final_path = await compress_file(backup_path)
                written.append(final_path)
                await asyncio.to_thread(backup_path.unlink)

            if not await self.verify_backup(final_path):
                raise IntegrityError("Backup verification failed")

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error("Backup failed", extra={"backup": backup_path.name, "error": message})
            await asyncio.to_thread(self._discard, written)
            if self.config.notify_on_failure:
                await self._notify_failure(message)
            return BackupResult(success=False, error=message)

        if self.config.upload_to_storage and self._uploader is not None:
            await self._uploader.upload(final_path)

        await self.cleanup_old_backups()

        logger.info("Backup completed successfully", extra={"artifact": str(final_path)})
        return BackupResult(success=True, file_path=final_path)

    async def _dump(self, path: Path) -> None:
        await self._runner.run(
            [
                "pg_dump",
                *self.connection.tool_args(),
                "-d",
                self.connection.database,
                "--format=plain",
                "--no-owner",
                "--no-acl",
                f"--file={path}",
            ],
            env=self.connection.tool_env(),
        )

    @staticmethod
    def _discard(paths: list[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(
                    "Could not remove failed backup file",
                    extra={"artifact": str(path), "error": str(e)},
                )

    async def _notify_failure(self, error: str) -> None:
        await self._notifier.notify(
            "Database backup failed",
            {"error": error, "database": self.connection.database},
        )

    @beartype
    async def verify_backup(self, path: Path) -> bool:
        """True iff the artifact exists, is non-empty and, if gzip, decompresses cleanly."""
        try:
            size = (await asyncio.to_thread(path.stat)).st_size
        except OSError as e:
            logger.error(
                "Backup verification failed", extra={"artifact": str(path), "error": str(e)}
            )
            return False

        if size == 0:
            logger.error("Backup file is empty", extra={"artifact": str(path)})
            return False

        if is_compressed(path.name) and not await verify_gzip(path):
            return False

        logger.info("Backup verified", extra={"artifact": str(path), "size_bytes": size})
        return True

    def _scan(self) -> list[BackupArtifact]:
        if not self.backup_dir.is_dir():
            return []

        artifacts = []
        for entry in self.backup_dir.iterdir():
            if not entry.is_file() or not is_backup_filename(entry.name):
                continue
            artifacts.append(
                BackupArtifact(
                    name=entry.name,
                    path=entry,
                    size_bytes=entry.stat().st_size,
                    timestamp=parse_backup_timestamp(entry.name) or EPOCH,
                    compressed=is_compressed(entry.name),
                )
            )
        return sorted(artifacts, key=lambda a: a.timestamp, reverse=True)

    @beartype
    async def list_backups(self) -> list[BackupArtifact]:
        """All artifacts in the backup directory, newest first."""
        try:
            return await asyncio.to_thread(self._scan)
        except OSError as e:
            logger.error("Failed to list backups", extra={"error": str(e)})
            return []

    @beartype
    async def get_backup_stats(self) -> BackupStats:
        """Count, total size and age range of the stored artifacts."""
        backups = await self.list_backups()
        if not backups:
            return BackupStats()

        return BackupStats(
            total_backups=len(backups),
            total_size_bytes=sum(b.size_bytes for b in backups),
            oldest_backup=backups[-1].timestamp,
            newest_backup=backups[0].timestamp,
        )

    @beartype
    async def cleanup_old_backups(self) -> list[Path]:
        """Delete artifacts the retention policy does not keep; return what was deleted."""
        backups = await self.list_backups()
        deleted: list[Path] = []

        for artifact in select_for_pruning(backups, self.config.retention):
            try:
                await asyncio.to_thread(artifact.path.unlink)
            except OSError as e:
                logger.error(
                    "Failed to delete old backup",
                    extra={"artifact": str(artifact.path), "error": str(e)},
                )
                continue
            deleted.append(artifact.path)
            logger.info("Deleted old backup", extra={"artifact": str(artifact.path)})

        logger.info(
            "Backup cleanup completed", extra={"deleted_count": len(deleted)}
        )
        return deleted
