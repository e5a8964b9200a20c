# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Composition root: builds every service once and owns their pools.

Nothing in the package keeps module-level service instances. Entry points
(CLI, Celery worker, an embedding application) call :func:`build_services`
or enter :func:`resilience_services` and pass the result around.
"""

import contextlib
from collections.abc import AsyncIterator

from attrs import field, frozen
from beartype import beartype

from .core.alerts import AlertNotifier
from .core.config import Settings, get_settings
from .core.database import Database, PoolConfig
from .core.logging_utils import get_logger
from .core.process import ToolRunner
from .services.backup.backup_service import BackupService
from .services.database_operations import DatabaseOperations
from .services.load_tester import ConnectionPoolLoadTester
from .services.recovery_service import DisasterRecoveryService
from .services.replica_manager import ReadReplicaManager
from .services.slow_query_monitor import SlowQueryConfig, SlowQueryMonitor, SystemLogSink

logger = get_logger(__name__)


@frozen
class ResilienceServices:
    """Every service of one process, wired together."""

    settings: Settings = field()
    primary: Database = field()
    replica_manager: ReadReplicaManager = field()
    slow_query_monitor: SlowQueryMonitor = field()
    backup_service: BackupService = field()
    recovery_service: DisasterRecoveryService = field()
    load_tester: ConnectionPoolLoadTester = field()
    operations: DatabaseOperations = field()


@beartype
def pool_config_from_settings(settings: Settings) -> PoolConfig:
    """Pool sizing shared by the primary and every replica."""
    return PoolConfig(
        min_connections=settings.database_pool_min,
        max_connections=settings.database_pool_max,
        connection_timeout=settings.database_pool_timeout,
        command_timeout=settings.database_command_timeout,
    )


@beartype
def build_services(
    settings: Settings | None = None,
    *,
    notifier: AlertNotifier | None = None,
    runner: ToolRunner | None = None,
) -> ResilienceServices:
    """Construct all services. Pools are created but not connected."""
    settings = settings or get_settings()
    notifier = notifier or AlertNotifier()
    pool_config = pool_config_from_settings(settings)

    primary = Database(settings.database_url, name="primary", pool_config=pool_config)
    monitor = SlowQueryMonitor(
        SlowQueryConfig.from_settings(settings),
        sink=SystemLogSink(primary),
        notifier=notifier,
    )
    primary.add_interceptor(monitor.intercept)

    replica_manager = ReadReplicaManager.from_settings(
        settings, primary, pool_config=pool_config, interceptors=[monitor.intercept]
    )
    backup_service = BackupService.from_settings(settings, runner=runner, notifier=notifier)
    recovery_service = DisasterRecoveryService.from_settings(settings, runner=runner)
    load_tester = ConnectionPoolLoadTester(primary)

    return ResilienceServices(
        settings=settings,
        primary=primary,
        replica_manager=replica_manager,
        slow_query_monitor=monitor,
        backup_service=backup_service,
        recovery_service=recovery_service,
        load_tester=load_tester,
        operations=DatabaseOperations(
            backup_service,
            recovery_service,
            monitor,
            load_tester,
            replica_manager,
        ),
    )


@contextlib.asynccontextmanager
async def resilience_services(
    settings: Settings | None = None,
    *,
    connect: bool = True,
    notifier: AlertNotifier | None = None,
    runner: ToolRunner | None = None,
) -> AsyncIterator[ResilienceServices]:
    """Build services, connect pools on entry, drain and disconnect on exit.

    ``connect=False`` suits file-only work (backups, listings) that talks to
    the database exclusively through the external tools.
    """
    services = build_services(settings, notifier=notifier, runner=runner)
    if connect:
        await services.replica_manager.connect()
    try:
        yield services
    finally:
        await services.slow_query_monitor.drain()
        if connect:
            await services.replica_manager.disconnect()
        logger.debug("Resilience services shut down")
