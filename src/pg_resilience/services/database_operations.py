# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Admin-facing database operations.

Callers are responsible for the admin capability check; these methods only
record who asked.
"""

from pathlib import Path

from beartype import beartype

from ..core.logging_utils import get_logger
from ..schemas.backup import BackupListItem, BackupResult, BackupStatsView
from ..schemas.load_test import (
    ConnectionLimitResult,
    LoadTestConfig,
    LoadTestResult,
    PoolHealthReport,
    QueryType,
)
from ..schemas.monitoring import ReplicaHealthReport, SlowQueryReport
from ..schemas.recovery import (
    RecoveryPointView,
    RecoveryTestResult,
    RestoreOptions,
    RestoreResult,
)
from .backup.backup_service import BackupService
from .load_tester import ConnectionPoolLoadTester
from .recovery_service import DisasterRecoveryService
from .replica_manager import ReadReplicaManager
from .slow_query_monitor import SlowQueryMonitor

SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")

logger = get_logger(__name__)


@beartype
def format_bytes(size: int) -> str:
    """Human readable size in 1024 steps, two decimals at most (``1.5 KB``)."""
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    scaled = float(size)
    while scaled >= 1024 and exponent < len(SIZE_UNITS) - 1:
        scaled /= 1024
        exponent += 1
    value = f"{scaled:.2f}".rstrip("0").rstrip(".")
    return f"{value} {SIZE_UNITS[exponent]}"


class DatabaseOperations:
    """One entry point for every admin database operation."""

    def __init__(
        self,
        backup_service: BackupService,
        recovery_service: DisasterRecoveryService,
        slow_query_monitor: SlowQueryMonitor,
        load_tester: ConnectionPoolLoadTester,
        replica_manager: ReadReplicaManager,
    ) -> None:
        self._backups = backup_service
        self._recovery = recovery_service
        self._monitor = slow_query_monitor
        self._load_tester = load_tester
        self._replicas = replica_manager

    # Backups

    @beartype
    async def get_backup_list(self, *, actor_id: str | None = None) -> list[BackupListItem]:
        """All backups, newest first, with readable sizes."""
        backups = await self._backups.list_backups()
        logger.info("Backup list requested", extra={"actor_id": actor_id, "count": len(backups)})
        return [
            BackupListItem(**b.model_dump(), size_formatted=format_bytes(b.size_bytes))
            for b in backups
        ]

    @beartype
    async def get_backup_stats(self, *, actor_id: str | None = None) -> BackupStatsView:
        """Backup statistics with a readable total size."""
        stats = await self._backups.get_backup_stats()
        logger.info("Backup statistics requested", extra={"actor_id": actor_id})
        return BackupStatsView(
            **stats.model_dump(), total_size_formatted=format_bytes(stats.total_size_bytes)
        )

    @beartype
    async def trigger_manual_backup(self, *, actor_id: str | None = None) -> BackupResult:
        """Run a backup now."""
        result = await self._backups.create_backup()
        logger.info(
            "Manual backup triggered",
            extra={
                "actor_id": actor_id,
                "success": result.success,
                "file_path": str(result.file_path) if result.file_path else None,
            },
        )
        return result

    # Recovery

    @beartype
    async def get_recovery_points(
        self, *, actor_id: str | None = None
    ) -> list[RecoveryPointView]:
        """Restorable artifacts by modification time, with readable sizes."""
        points = await self._recovery.list_recovery_points()
        logger.info("Recovery points requested", extra={"actor_id": actor_id})
        return [
            RecoveryPointView(**p.model_dump(), size_formatted=format_bytes(p.size_bytes))
            for p in points
        ]

    @beartype
    async def test_disaster_recovery(
        self,
        backup_path: Path | None = None,
        *,
        dry_run: bool | None = None,
        actor_id: str | None = None,
    ) -> RecoveryTestResult:
        """Run a recovery test against ``backup_path`` or the latest backup."""
        result = await self._recovery.test_recovery(backup_path, dry_run=dry_run)
        logger.info(
            "Recovery test completed",
            extra={
                "actor_id": actor_id,
                "success": result.success,
                "backup_file": result.backup_file,
            },
        )
        return result

    @beartype
    async def restore_backup(
        self, options: RestoreOptions, *, actor_id: str | None = None
    ) -> RestoreResult:
        """Replay a backup into the database named by ``options``."""
        logger.warning(
            "Restore requested",
            extra={
                "actor_id": actor_id,
                "backup_path": str(options.backup_path),
                "drop_existing": options.drop_existing,
                "target_database": options.target_database,
            },
        )
        result = await self._recovery.restore_from_backup(options)
        logger.info(
            "Restore finished",
            extra={"actor_id": actor_id, "success": result.success},
        )
        return result

    # Monitoring

    @beartype
    async def get_slow_query_stats(self, *, actor_id: str | None = None) -> SlowQueryReport:
        """Current slow query report."""
        logger.info("Slow query statistics requested", extra={"actor_id": actor_id})
        return self._monitor.get_report()

    @beartype
    async def reset_slow_query_stats(self, *, actor_id: str | None = None) -> None:
        """Clear every slow query bucket."""
        await self._monitor.reset_stats()
        logger.info("Slow query statistics reset", extra={"actor_id": actor_id})

    @beartype
    async def check_replica_health(
        self, *, actor_id: str | None = None
    ) -> ReplicaHealthReport:
        """Liveness and lag of every replica."""
        logger.info("Replica health check requested", extra={"actor_id": actor_id})
        return await self._replicas.check_replica_health()

    # Load testing

    @beartype
    async def run_connection_pool_load_test(
        self,
        duration: float = 10.0,
        concurrency: int = 10,
        query_type: str | QueryType = QueryType.MIXED,
        *,
        ramp_up: bool = True,
        actor_id: str | None = None,
    ) -> LoadTestResult:
        """Load test, ramping workers up unless ``ramp_up`` is False."""
        config = LoadTestConfig(
            duration_seconds=duration,
            concurrency=concurrency,
            query_type=QueryType(query_type),
            ramp_up=ramp_up,
        )
        result = await self._load_tester.run_load_test(config)
        logger.info(
            "Load test completed",
            extra={
                "actor_id": actor_id,
                "total_queries": result.total_queries,
                "success": result.success,
            },
        )
        return result

    @beartype
    async def test_connection_limits(
        self, *, actor_id: str | None = None
    ) -> ConnectionLimitResult:
        """Probe how many connections the server accepts."""
        result = await self._load_tester.test_connection_limits()
        logger.info(
            "Connection limit test completed",
            extra={"actor_id": actor_id, "max_connections": result.max_connections},
        )
        return result

    @beartype
    async def monitor_pool_health(
        self, duration_seconds: float = 10.0, *, actor_id: str | None = None
    ) -> PoolHealthReport:
        """Sample pool activity for ``duration_seconds``."""
        logger.info(
            "Pool health monitoring requested",
            extra={"actor_id": actor_id, "duration_seconds": duration_seconds},
        )
        return await self._load_tester.monitor_pool_health(duration_seconds)
