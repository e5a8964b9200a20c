"""Unit tests for the Celery backup schedule and task."""

import contextlib
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from celery.schedules import crontab

from conftest import DATABASE_URL, FakeToolRunner, RecordingNotifier
from pg_resilience import worker
from pg_resilience.core.connection import ConnectionDescriptor
from pg_resilience.core.errors import ConfigurationError
from pg_resilience.services.backup.backup_service import BackupService


@pytest.fixture(autouse=True)
def _database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    """Finalizing the app reads the backup schedule from Settings."""
    monkeypatch.setenv("DATABASE_URL", DATABASE_URL)
    monkeypatch.setenv("BACKUP_SCHEDULE_HOUR", "3")
    monkeypatch.setenv("BACKUP_SCHEDULE_MINUTE", "15")


class TestDailyBackupSchedule:
    """Test crontab construction."""

    def test_valid_schedule(self) -> None:
        schedule = worker.daily_backup_schedule(2, 30)

        assert isinstance(schedule, crontab)
        assert schedule.hour == {2}
        assert schedule.minute == {30}

    @pytest.mark.parametrize(("hour", "minute"), [(24, 0), (-1, 0), (2, 60), (2, -5)])
    def test_out_of_range(self, hour: int, minute: int) -> None:
        with pytest.raises(ConfigurationError):
            worker.daily_backup_schedule(hour, minute)

    def test_app_runs_in_utc(self) -> None:
        assert worker.app.conf.timezone == "UTC"
        assert worker.app.conf.enable_utc is True

    def test_finalize_registers_daily_backup(self) -> None:
        worker.app.finalize()

        entries = [
            entry
            for entry in worker.app.conf.beat_schedule.values()
            if entry["task"] == worker.DAILY_BACKUP_TASK
        ]
        assert len(entries) == 1
        assert entries[0]["schedule"].hour == {3}
        assert entries[0]["schedule"].minute == {15}


class TestPerformDailyBackup:
    """Test the coroutine behind the scheduled task."""

    @staticmethod
    def fake_services(service: BackupService) -> Any:
        @contextlib.asynccontextmanager
        async def services(*args: Any, **kwargs: Any) -> AsyncIterator[SimpleNamespace]:
            yield SimpleNamespace(backup_service=service)

        return services

    @pytest.mark.asyncio
    async def test_success_report(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        service = BackupService(
            connection,
            backup_dir,
            runner=runner,
            notifier=notifier,
            clock=lambda: datetime(2024, 3, 12, 2, 0, tzinfo=timezone.utc),
        )

        with patch.object(worker, "resilience_services", self.fake_services(service)):
            report = await worker.perform_daily_backup()

        assert report["status"] == "SUCCESS"
        assert report["file_path"].endswith("backup-2024-03-12T02-00-00-000Z.sql.gz")
        assert report["error"] is None
        assert report["stats"]["total_backups"] == 1

    @pytest.mark.asyncio
    async def test_failure_report(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        notifier: RecordingNotifier,
    ) -> None:
        service = BackupService(
            connection,
            backup_dir,
            runner=FakeToolRunner(failures={"pg_dump": "connection refused"}),
            notifier=notifier,
        )

        with patch.object(worker, "resilience_services", self.fake_services(service)):
            report = await worker.perform_daily_backup()

        assert report["status"] == "FAILED"
        assert "connection refused" in report["error"]
        assert report["stats"]["total_backups"] == 0


class TestRunDailyBackupTask:
    """Test the Celery task wrapper."""

    def test_returns_report(self) -> None:
        expected = {"status": "SUCCESS", "file_path": "/b.sql.gz", "error": None, "stats": {}}

        with patch.object(worker, "perform_daily_backup", AsyncMock(return_value=expected)):
            assert worker.run_daily_backup() == expected

    def test_crash_is_reported_not_raised(self) -> None:
        failing = AsyncMock(side_effect=RuntimeError("DATABASE_URL missing"))

        with patch.object(worker, "perform_daily_backup", failing):
            report = worker.run_daily_backup()

        assert report["status"] == "ERROR"
        assert "DATABASE_URL missing" in report["message"]
