# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Disaster recovery: restore from backup and non-destructive recovery tests.

A recovery test runs up to three checks against one artifact:

* integrity: the file is non-empty and, if gzip, decompresses cleanly;
* analysis: a sample of the dump head is scanned for ``INSERT INTO`` and
  ``COPY`` markers. ``records_estimate`` is that marker count times ten. It is
  a rough signal that the dump carries data, not a row count;
* dry-run restore: the dump is replayed into a throwaway database which is
  dropped afterwards. Only this step proves the artifact is restorable and it
  is reported separately as ``restore_verified``.
"""

import asyncio
import os
import secrets
import tempfile
import time
import zlib
from datetime import datetime, timezone
from pathlib import Path

from attrs import field, frozen
from beartype import beartype

from ..core.config import Settings
from ..core.connection import ConnectionDescriptor
from ..core.errors import ToolInvocationError
from ..core.logging_utils import get_logger
from ..core.process import ToolRunner
from ..schemas.recovery import (
    RecoveryPoint,
    RecoveryTestResult,
    RestoreOptions,
    RestoreResult,
)
from .backup.compression import decompress_file, read_head, verify_gzip
from .backup.naming import is_backup_filename, is_compressed

RECORDS_PER_MARKER = 10
DATA_MARKERS = ("INSERT INTO", "COPY ")
RESTORE_TEST_INFIX = "_restore_test_"
# PostgreSQL truncates identifiers beyond 63 bytes
MAX_DATABASE_NAME = 63

logger = get_logger(__name__)


@frozen
class BackupAnalysis:
    """What a sample of the dump head says about its content."""

    size_bytes: int = field(default=0)
    records_estimate: int = field(default=0)
    has_data: bool = field(default=False)


class DisasterRecoveryService:
    """Restore databases from backup artifacts and rehearse recoveries."""

    def __init__(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        *,
        runner: ToolRunner | None = None,
        dry_run_enabled: bool = True,
        scratch_dir: Path | None = None,
    ) -> None:
        """Initialize recovery service."""
        self.connection = connection
        self.backup_dir = backup_dir
        self.dry_run_enabled = dry_run_enabled
        self._runner = runner or ToolRunner()
        self._scratch_dir = scratch_dir

    @classmethod
    def from_settings(
        cls, settings: Settings, *, runner: ToolRunner | None = None
    ) -> "DisasterRecoveryService":
        """Build the service from environment configuration."""
        return cls(
            ConnectionDescriptor.parse(settings.database_url),
            Path(settings.backup_dir),
            runner=runner,
            dry_run_enabled=settings.recovery_dry_run_enabled,
        )

    @beartype
    async def restore_from_backup(self, options: RestoreOptions) -> RestoreResult:
        """Replay a dump into the configured (or requested) database.

        Compressed artifacts are inflated into a scratch file that is removed
        whether the restore succeeds or not.
        """
        start = time.perf_counter()
        target = self.connection
        if options.target_database is not None:
            target = target.with_database(options.target_database)

        scratch: Path | None = None
        try:
            logger.info(
                "Starting restore",
                extra={"backup": str(options.backup_path), "database": target.database},
            )

            if not await asyncio.to_thread(options.backup_path.is_file):
                raise FileNotFoundError(f"Backup file not found: {options.backup_path}")

            restore_file = options.backup_path
            if is_compressed(options.backup_path.name):
                scratch = await asyncio.to_thread(self._scratch_file)
                restore_file = await decompress_file(options.backup_path, scratch)

            if options.drop_existing:
                await self._drop_database(target)
            if options.create_database:
                await self._create_database(target)

            await self._runner.run(
                [
                    "psql",
                    *target.tool_args(),
                    "-d",
                    target.database,
                    "-f",
                    str(restore_file),
                    *(["-v", "ON_ERROR_STOP=1"] if options.verbose else ["--quiet"]),
                ],
                env=target.tool_env(),
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                "Restore failed", extra={"database": target.database, "error": message}
            )
            return RestoreResult(success=False, error=message)
        finally:
            if scratch is not None:
                await asyncio.to_thread(scratch.unlink, missing_ok=True)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Restore completed",
            extra={"database": target.database, "duration_ms": round(duration_ms)},
        )
        return RestoreResult(success=True, duration_ms=duration_ms)

    def _scratch_file(self) -> Path:
        fd, name = tempfile.mkstemp(prefix="restore-", suffix=".sql", dir=self._scratch_dir)
        os.close(fd)
        return Path(name)

    async def _drop_database(self, target: ConnectionDescriptor) -> None:
        logger.info("Dropping database", extra={"database": target.database})
        await self._runner.run(
            ["dropdb", *target.tool_args(), "--if-exists", target.database],
            env=target.tool_env(),
        )

    async def _create_database(self, target: ConnectionDescriptor) -> None:
        logger.info("Creating database", extra={"database": target.database})
        await self._runner.run(
            ["createdb", *target.tool_args(), target.database],
            env=target.tool_env(),
        )

    @beartype
    async def test_recovery(
        self, backup_path: Path | None = None, *, dry_run: bool | None = None
    ) -> RecoveryTestResult:
        """Validate an artifact without touching the real database."""
        start = time.perf_counter()
        errors: list[str] = []
        dry_run = self.dry_run_enabled if dry_run is None else dry_run

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        target = backup_path or await self.get_latest_backup()
        if target is None:
            logger.error("Recovery test aborted", extra={"error": "No backup file found"})
            return RecoveryTestResult(
                success=False,
                backup_file="unknown",
                test_duration_ms=elapsed(),
                errors=["No backup file found"],
            )

        logger.info("Starting disaster recovery test", extra={"backup": str(target)})
        errors.extend(await self._check_integrity(target))
        analysis = await self.analyze_backup(target)

        restore_verified = False
        if dry_run and not errors:
            restore = await self._test_database_restore(target)
            if restore.success:
                restore_verified = True
            else:
                errors.append(f"Test restore failed: {restore.error}")

        result = RecoveryTestResult(
            success=not errors,
            backup_file=str(target),
            test_duration_ms=elapsed(),
            records_estimate=analysis.records_estimate,
            has_data=analysis.has_data,
            restore_verified=restore_verified,
            errors=errors,
        )
        logger.info(
            "Disaster recovery test finished",
            extra={
                "backup": str(target),
                "success": result.success,
                "restore_verified": restore_verified,
            },
        )
        return result

    async def _check_integrity(self, path: Path) -> list[str]:
        try:
            size = (await asyncio.to_thread(path.stat)).st_size
        except OSError as e:
            logger.error("Integrity check failed", extra={"backup": str(path), "error": str(e)})
            return ["Backup integrity check failed"]

        if size == 0:
            logger.error("Backup file is empty", extra={"backup": str(path)})
            return ["Backup integrity check failed"]

        if is_compressed(path.name) and not await verify_gzip(path):
            return ["Compression integrity check failed"]

        return []

    @beartype
    async def analyze_backup(self, path: Path) -> BackupAnalysis:
        """Estimate the data volume of a dump from a sample of its head."""
        try:
            size = (await asyncio.to_thread(path.stat)).st_size
            head = await read_head(path)
        except (OSError, EOFError, zlib.error) as e:
            logger.error("Backup analysis failed", extra={"backup": str(path), "error": str(e)})
            return BackupAnalysis()

        markers = sum(head.count(marker) for marker in DATA_MARKERS)
        analysis = BackupAnalysis(
            size_bytes=size,
            records_estimate=markers * RECORDS_PER_MARKER,
            has_data=markers > 0,
        )
        logger.info(
            "Backup analysis",
            extra={"backup": str(path), "records_estimate": analysis.records_estimate},
        )
        return analysis

    def _throwaway_database_name(self) -> str:
        suffix = f"{RESTORE_TEST_INFIX}{secrets.token_hex(4)}"
        return f"{self.connection.database[: MAX_DATABASE_NAME - len(suffix)]}{suffix}"

    async def _test_database_restore(self, path: Path) -> RestoreResult:
        """Restore into a uniquely named database, then always drop it."""
        database = self._throwaway_database_name()
        try:
            return await self.restore_from_backup(
                RestoreOptions(
                    backup_path=path,
                    create_database=True,
                    verbose=True,
                    target_database=database,
                )
            )
        finally:
            try:
                await self._drop_database(self.connection.with_database(database))
            except ToolInvocationError as e:
                logger.warning(
                    "Failed to drop test database",
                    extra={"database": database, "error": str(e)},
                )

    def _scan_recovery_points(self) -> list[RecoveryPoint]:
        if not self.backup_dir.is_dir():
            return []

        points = []
        for entry in self.backup_dir.iterdir():
            if not entry.is_file() or not is_backup_filename(entry.name):
                continue
            stat = entry.stat()
            points.append(
                RecoveryPoint(
                    name=entry.name,
                    path=entry,
                    size_bytes=stat.st_size,
                    timestamp=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return sorted(points, key=lambda p: p.timestamp, reverse=True)

    @beartype
    async def list_recovery_points(self) -> list[RecoveryPoint]:
        """Restorable artifacts ordered by modification time, newest first."""
        try:
            return await asyncio.to_thread(self._scan_recovery_points)
        except OSError as e:
            logger.error("Failed to list recovery points", extra={"error": str(e)})
            return []

    def _latest_by_name(self) -> Path | None:
        if not self.backup_dir.is_dir():
            return None
        names = sorted(
            (entry.name for entry in self.backup_dir.iterdir() if is_backup_filename(entry.name)),
            reverse=True,
        )
        return self.backup_dir / names[0] if names else None

    @beartype
    async def get_latest_backup(self) -> Path | None:
        """Most recent artifact by (timestamp-bearing) file name."""
        try:
            return await asyncio.to_thread(self._latest_by_name)
        except OSError as e:
            logger.error("Failed to find latest backup", extra={"error": str(e)})
            return None
