# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Celery app running the automated daily backup.

Start a worker with beat::

    celery -A pg_resilience.worker worker --beat --loglevel=info
"""

import asyncio
import os
from typing import Any

from beartype import beartype
from celery import Celery
from celery.schedules import crontab

from .bootstrap import resilience_services
from .core.config import Settings, get_settings
from .core.errors import ConfigurationError
from .core.logging_utils import get_logger

DAILY_BACKUP_TASK = "pg_resilience.backup.daily"

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

logger = get_logger(__name__)

app = Celery("pg_resilience", broker=REDIS_URL, backend=REDIS_URL)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # one backup at a time per worker
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    task_time_limit=3600,
    task_soft_time_limit=3300,
)


@beartype
def daily_backup_schedule(hour: int, minute: int) -> crontab:
    """Crontab for the daily backup, in UTC."""
    if not 0 <= hour <= 23:
        raise ConfigurationError(f"Backup schedule hour must be 0-23, got {hour}")
    if not 0 <= minute <= 59:
        raise ConfigurationError(f"Backup schedule minute must be 0-59, got {minute}")
    return crontab(hour=hour, minute=minute)


@app.on_after_finalize.connect
def setup_periodic_tasks(sender: Celery, **kwargs: Any) -> None:
    settings = get_settings()
    sender.add_periodic_task(
        daily_backup_schedule(settings.backup_schedule_hour, settings.backup_schedule_minute),
        run_daily_backup.s(),
        name="daily database backup",
    )


async def perform_daily_backup(settings: Settings | None = None) -> dict[str, Any]:
    """Create a backup and report it together with the backup statistics."""
    async with resilience_services(settings, connect=False) as services:
        result = await services.backup_service.create_backup()
        stats = await services.backup_service.get_backup_stats()

    logger.info(
        "Daily backup finished",
        extra={
            "success": result.success,
            "file_path": str(result.file_path) if result.file_path else None,
            "total_backups": stats.total_backups,
            "total_size_bytes": stats.total_size_bytes,
        },
    )
    return {
        "status": "SUCCESS" if result.success else "FAILED",
        "file_path": str(result.file_path) if result.file_path else None,
        "error": result.error,
        "stats": stats.model_dump(mode="json"),
    }


@app.task(bind=True, name=DAILY_BACKUP_TASK)
def run_daily_backup(self: Any) -> dict[str, Any]:
    """Scheduled entry point; never raises so beat keeps its schedule."""
    task_id = self.request.id
    logger.info("Daily backup task started", extra={"task_id": task_id})

    try:
        return asyncio.run(perform_daily_backup())
    except Exception as e:
        logger.exception("Daily backup task crashed", extra={"task_id": task_id})
        return {"status": "ERROR", "message": f"Daily backup task crashed: {e}"}
