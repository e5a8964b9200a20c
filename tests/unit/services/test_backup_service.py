"""Unit tests for the backup service."""

import gzip
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from boto3.exceptions import S3UploadFailedError

from conftest import SAMPLE_DUMP, FakeToolRunner, RecordingNotifier
from pg_resilience.core.config import Settings
from pg_resilience.core.connection import ConnectionDescriptor
from pg_resilience.core.result_types import Err, Ok
from pg_resilience.services.backup.backup_service import BackupConfig, BackupService
from pg_resilience.services.backup.naming import EPOCH, backup_filename
from pg_resilience.services.backup.retention import RetentionPolicy
from pg_resilience.services.backup.storage import ObjectStorageUploader

NOW = datetime(2024, 3, 12, 2, 0, tzinfo=timezone.utc)


def make_service(
    connection: ConnectionDescriptor,
    backup_dir: Path,
    runner: FakeToolRunner,
    notifier: RecordingNotifier,
    *,
    uploader: ObjectStorageUploader | None = None,
    **config: object,
) -> BackupService:
    return BackupService(
        connection,
        backup_dir,
        config=BackupConfig(**config),  # type: ignore[arg-type]
        runner=runner,
        uploader=uploader,
        notifier=notifier,
        clock=lambda: NOW,
    )


def write_artifact(backup_dir: Path, moment: datetime, content: bytes = b"SELECT 1;\n") -> Path:
    path = backup_dir / backup_filename(moment, compressed=True)
    path.write_bytes(gzip.compress(content))
    return path


@pytest.fixture
def service(
    connection: ConnectionDescriptor,
    backup_dir: Path,
    runner: FakeToolRunner,
    notifier: RecordingNotifier,
) -> BackupService:
    return make_service(connection, backup_dir, runner, notifier)


class TestVerifyBackup:
    """Test verify_backup: true iff size > 0 and (plain or intact gzip)."""

    @pytest.mark.asyncio
    async def test_zero_byte_plain_dump_fails(
        self, service: BackupService, backup_dir: Path
    ) -> None:
        path = backup_dir / "backup-2024-01-15T10-30-00-000Z.sql"
        path.touch()

        assert await service.verify_backup(path) is False

    @pytest.mark.asyncio
    async def test_non_empty_plain_dump_passes(
        self, service: BackupService, backup_dir: Path
    ) -> None:
        path = backup_dir / "backup-2024-01-15T10-30-00-000Z.sql"
        path.write_bytes(SAMPLE_DUMP)

        assert await service.verify_backup(path) is True

    @pytest.mark.asyncio
    async def test_intact_gzip_passes(self, service: BackupService, backup_dir: Path) -> None:
        path = write_artifact(backup_dir, NOW, SAMPLE_DUMP)

        assert await service.verify_backup(path) is True

    @pytest.mark.asyncio
    async def test_corrupt_gzip_fails(self, service: BackupService, backup_dir: Path) -> None:
        path = backup_dir / "backup-2024-01-15T10-30-00-000Z.sql.gz"
        path.write_bytes(b"this is not a gzip stream")

        assert await service.verify_backup(path) is False

    @pytest.mark.asyncio
    async def test_truncated_gzip_fails(self, service: BackupService, backup_dir: Path) -> None:
        path = backup_dir / "backup-2024-01-15T10-30-00-000Z.sql.gz"
        path.write_bytes(gzip.compress(SAMPLE_DUMP * 50)[:-12])

        assert await service.verify_backup(path) is False

    @pytest.mark.asyncio
    async def test_missing_file_fails(self, service: BackupService, backup_dir: Path) -> None:
        assert await service.verify_backup(backup_dir / "backup-missing.sql") is False


class TestCreateBackup:
    """Test the dump -> compress -> verify -> upload -> prune flow."""

    @pytest.mark.asyncio
    async def test_compressed_backup_succeeds(
        self, service: BackupService, backup_dir: Path, runner: FakeToolRunner
    ) -> None:
        result = await service.create_backup()

        assert result.success is True
        assert result.error is None
        assert result.file_path == backup_dir / "backup-2024-03-12T02-00-00-000Z.sql.gz"
        assert gzip.decompress(result.file_path.read_bytes()) == SAMPLE_DUMP
        assert not (backup_dir / "backup-2024-03-12T02-00-00-000Z.sql").exists()

    @pytest.mark.asyncio
    async def test_pg_dump_invocation(
        self, service: BackupService, backup_dir: Path, runner: FakeToolRunner
    ) -> None:
        await service.create_backup()

        (dump,) = runner.calls_for("pg_dump")
        assert dump[:9] == [
            "pg_dump", "-h", "db.internal", "-p", "5432", "-U", "app", "-d", "appdb",
        ]
        assert "--format=plain" in dump
        assert "--no-owner" in dump
        assert "--no-acl" in dump
        assert f"--file={backup_dir / 'backup-2024-03-12T02-00-00-000Z.sql'}" in dump
        assert runner.envs[0] is not None
        assert runner.envs[0]["PGPASSWORD"] == "s3cret"

    @pytest.mark.asyncio
    async def test_uncompressed_backup(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        service = make_service(connection, backup_dir, runner, notifier, compression=False)

        result = await service.create_backup()

        assert result.success is True
        assert result.file_path == backup_dir / "backup-2024-03-12T02-00-00-000Z.sql"
        assert result.file_path.read_bytes() == SAMPLE_DUMP

    @pytest.mark.asyncio
    async def test_creates_missing_backup_directory(
        self,
        connection: ConnectionDescriptor,
        tmp_path: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        target = tmp_path / "nested" / "backups"
        service = make_service(connection, target, runner, notifier)

        result = await service.create_backup()

        assert result.success is True
        assert target.is_dir()

    @pytest.mark.asyncio
    async def test_dump_failure_is_reported_and_alerted(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        notifier: RecordingNotifier,
    ) -> None:
        runner = FakeToolRunner(failures={"pg_dump": "FATAL: password authentication failed"})
        service = make_service(connection, backup_dir, runner, notifier)

        result = await service.create_backup()

        assert result.success is False
        assert result.file_path is None
        assert "pg_dump failed with exit code 1" in result.error
        assert "password authentication failed" in result.error
        assert list(backup_dir.iterdir()) == []
        assert len(notifier.alerts) == 1
        title, details = notifier.alerts[0]
        assert title == "Database backup failed"
        assert details["error"] == result.error

    @pytest.mark.asyncio
    async def test_empty_dump_fails_verification_and_is_removed(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        notifier: RecordingNotifier,
    ) -> None:
        runner = FakeToolRunner(dump_content=b"")
        service = make_service(connection, backup_dir, runner, notifier, compression=False)

        result = await service.create_backup()

        assert result.success is False
        assert result.error == "Backup verification failed"
        assert list(backup_dir.iterdir()) == []
        assert len(notifier.alerts) == 1

    @pytest.mark.asyncio
    async def test_no_alert_when_notifications_disabled(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        notifier: RecordingNotifier,
    ) -> None:
        runner = FakeToolRunner(failures={"pg_dump": "boom"})
        service = make_service(
            connection, backup_dir, runner, notifier, notify_on_failure=False
        )

        result = await service.create_backup()

        assert result.success is False
        assert notifier.alerts == []

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_escape(
        self, connection: ConnectionDescriptor, backup_dir: Path
    ) -> None:
        runner = FakeToolRunner(failures={"pg_dump": "boom"})
        service = make_service(connection, backup_dir, runner, RecordingNotifier(fail=True))

        result = await service.create_backup()

        assert result.success is False
        assert "boom" in result.error

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_local_backup(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        uploader = MagicMock(spec=ObjectStorageUploader)
        uploader.upload = AsyncMock(return_value=Err("Failed to upload: access denied"))
        service = make_service(connection, backup_dir, runner, notifier, uploader=uploader)

        result = await service.create_backup()

        assert result.success is True
        assert result.file_path is not None
        assert result.file_path.exists()
        uploader.upload.assert_awaited_once_with(result.file_path)
        assert notifier.alerts == []

    @pytest.mark.asyncio
    async def test_rejected_upload_still_succeeds_and_prunes(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        for days in range(1, 4):
            write_artifact(backup_dir, NOW - timedelta(days=days))
        client = MagicMock()
        client.upload_file.side_effect = S3UploadFailedError(
            "Failed to upload: An error occurred (NoSuchBucket) when calling the"
            " PutObject operation"
        )
        uploader = ObjectStorageUploader(
            bucket="nope", environment="production", client=client
        )
        service = make_service(
            connection,
            backup_dir,
            runner,
            notifier,
            uploader=uploader,
            retention=RetentionPolicy(daily_count=1, weekly_count=0, monthly_count=0),
        )

        result = await service.create_backup()

        assert result.success is True
        assert result.file_path is not None
        assert [p.name for p in backup_dir.iterdir()] == [result.file_path.name]
        client.upload_file.assert_called_once()
        assert notifier.alerts == []

    @pytest.mark.asyncio
    async def test_upload_skipped_when_disabled(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        uploader = MagicMock(spec=ObjectStorageUploader)
        uploader.upload = AsyncMock(return_value=Ok("bucket/key"))
        service = make_service(
            connection,
            backup_dir,
            runner,
            notifier,
            uploader=uploader,
            upload_to_storage=False,
        )

        await service.create_backup()

        uploader.upload.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_successful_backup_prunes_old_artifacts(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        for days in range(1, 6):
            write_artifact(backup_dir, NOW - timedelta(days=days))
        service = make_service(
            connection,
            backup_dir,
            runner,
            notifier,
            retention=RetentionPolicy(daily_count=2, weekly_count=0, monthly_count=0),
        )

        result = await service.create_backup()

        remaining = sorted(p.name for p in backup_dir.iterdir())
        assert remaining == [
            backup_filename(NOW - timedelta(days=1), compressed=True),
            result.file_path.name,
        ]

    @pytest.mark.asyncio
    async def test_failed_backup_does_not_prune(
        self, connection: ConnectionDescriptor, backup_dir: Path, notifier: RecordingNotifier
    ) -> None:
        for days in range(1, 6):
            write_artifact(backup_dir, NOW - timedelta(days=days))
        runner = FakeToolRunner(failures={"pg_dump": "boom"})
        service = make_service(
            connection,
            backup_dir,
            runner,
            notifier,
            retention=RetentionPolicy(daily_count=1, weekly_count=0, monthly_count=0),
        )

        await service.create_backup()

        assert len(list(backup_dir.iterdir())) == 5


class TestBackupListing:
    """Test list_backups, get_backup_stats and cleanup_old_backups."""

    @pytest.mark.asyncio
    async def test_list_newest_first_and_ignores_other_files(
        self, service: BackupService, backup_dir: Path
    ) -> None:
        older = write_artifact(backup_dir, NOW - timedelta(days=2))
        newer = write_artifact(backup_dir, NOW - timedelta(hours=1))
        (backup_dir / "notes.txt").write_text("not a backup")

        backups = await service.list_backups()

        assert [b.path for b in backups] == [newer, older]
        assert backups[0].timestamp == NOW - timedelta(hours=1)
        assert all(b.compressed for b in backups)

    @pytest.mark.asyncio
    async def test_unparseable_timestamp_sorts_last(
        self, service: BackupService, backup_dir: Path
    ) -> None:
        write_artifact(backup_dir, NOW)
        (backup_dir / "backup-manual.sql").write_text("SELECT 1;")

        backups = await service.list_backups()

        assert backups[-1].name == "backup-manual.sql"
        assert backups[-1].timestamp == EPOCH

    @pytest.mark.asyncio
    async def test_list_missing_directory(
        self,
        connection: ConnectionDescriptor,
        tmp_path: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        service = make_service(connection, tmp_path / "absent", runner, notifier)

        assert await service.list_backups() == []

    @pytest.mark.asyncio
    async def test_stats(self, service: BackupService, backup_dir: Path) -> None:
        oldest = write_artifact(backup_dir, NOW - timedelta(days=3))
        newest = write_artifact(backup_dir, NOW)

        stats = await service.get_backup_stats()

        assert stats.total_backups == 2
        assert stats.total_size_bytes == oldest.stat().st_size + newest.stat().st_size
        assert stats.oldest_backup == NOW - timedelta(days=3)
        assert stats.newest_backup == NOW

    @pytest.mark.asyncio
    async def test_stats_empty(self, service: BackupService) -> None:
        stats = await service.get_backup_stats()

        assert stats.total_backups == 0
        assert stats.total_size_bytes == 0
        assert stats.oldest_backup is None
        assert stats.newest_backup is None

    @pytest.mark.asyncio
    async def test_cleanup_returns_deleted_paths(
        self,
        connection: ConnectionDescriptor,
        backup_dir: Path,
        runner: FakeToolRunner,
        notifier: RecordingNotifier,
    ) -> None:
        paths = [write_artifact(backup_dir, NOW - timedelta(days=d)) for d in range(4)]
        service = make_service(
            connection,
            backup_dir,
            runner,
            notifier,
            retention=RetentionPolicy(daily_count=3, weekly_count=0, monthly_count=0),
        )

        deleted = await service.cleanup_old_backups()

        assert deleted == [paths[3]]
        assert not paths[3].exists()


class TestFromSettings:
    """Test construction from Settings."""

    def test_from_settings(self, settings: Settings, backup_dir: Path) -> None:
        service = BackupService.from_settings(settings)

        assert service.backup_dir == backup_dir
        assert service.connection.database == "appdb"
        assert service.config.retention == RetentionPolicy()
        assert service.config.upload_to_storage is False
