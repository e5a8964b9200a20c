"""Unit tests for the daily/weekly/monthly retention policy."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pg_resilience.core.errors import ConfigurationError
from pg_resilience.schemas.backup import BackupArtifact
from pg_resilience.services.backup.naming import backup_filename
from pg_resilience.services.backup.retention import RetentionPolicy, select_for_pruning


def make_artifact(moment: datetime) -> BackupArtifact:
    name = backup_filename(moment, compressed=True)
    return BackupArtifact(
        name=name,
        path=Path("/backups") / name,
        size_bytes=1024,
        timestamp=moment,
        compressed=True,
    )


def daily_artifacts(newest: datetime, days: int) -> list[BackupArtifact]:
    return [make_artifact(newest - timedelta(days=offset)) for offset in range(days)]


class TestRetentionPolicy:
    """Test policy validation."""

    def test_defaults(self) -> None:
        policy = RetentionPolicy()

        assert (policy.daily_count, policy.weekly_count, policy.monthly_count) == (7, 4, 3)

    @pytest.mark.parametrize("field_name", ["daily_count", "weekly_count", "monthly_count"])
    def test_negative_counts_rejected(self, field_name: str) -> None:
        with pytest.raises(ConfigurationError, match=field_name):
            RetentionPolicy(**{field_name: -1})


class TestSelectForPruning:
    """Test which artifacts survive pruning."""

    def test_ten_daily_backups_with_small_policy(self) -> None:
        """2 newest + first of the newest week + first of the newest month survive."""
        # 2024-03-03 is a Sunday (ISO week 9); 03-11 starts ISO week 11
        newest = datetime(2024, 3, 12, 2, 0, tzinfo=timezone.utc)
        artifacts = daily_artifacts(newest, 10)
        policy = RetentionPolicy(daily_count=2, weekly_count=1, monthly_count=1)

        pruned = select_for_pruning(artifacts, policy)
        survivors = {a.timestamp.day for a in artifacts} - {a.timestamp.day for a in pruned}

        assert survivors == {12, 11, 3}
        assert len(pruned) == 7
        assert len(survivors) <= 2 + 1 + 1

    def test_newest_daily_count_never_pruned(self) -> None:
        """Holds for any policy and any spacing of artifacts."""
        newest = datetime(2024, 6, 30, 23, 59, tzinfo=timezone.utc)
        spacings = [timedelta(hours=6), timedelta(days=1), timedelta(days=9)]

        for spacing in spacings:
            artifacts = [make_artifact(newest - spacing * i) for i in range(25)]
            for daily in range(0, 12, 3):
                for weekly in range(0, 4):
                    for monthly in range(0, 3):
                        policy = RetentionPolicy(
                            daily_count=daily, weekly_count=weekly, monthly_count=monthly
                        )
                        pruned = {a.name for a in select_for_pruning(artifacts, policy)}
                        protected = {a.name for a in artifacts[:daily]}
                        assert not pruned & protected

    def test_input_order_does_not_matter(self) -> None:
        artifacts = daily_artifacts(datetime(2024, 3, 12, tzinfo=timezone.utc), 10)
        policy = RetentionPolicy(daily_count=3, weekly_count=1, monthly_count=0)

        forward = select_for_pruning(artifacts, policy)
        backward = select_for_pruning(list(reversed(artifacts)), policy)

        assert [a.name for a in forward] == [a.name for a in backward]

    def test_pruned_are_returned_newest_first(self) -> None:
        artifacts = daily_artifacts(datetime(2024, 3, 12, tzinfo=timezone.utc), 10)

        pruned = select_for_pruning(artifacts, RetentionPolicy(1, 0, 0))

        timestamps = [a.timestamp for a in pruned]
        assert timestamps == sorted(timestamps, reverse=True)
        assert len(pruned) == 9

    def test_monthly_tier_keeps_first_of_each_recent_month(self) -> None:
        artifacts = [
            make_artifact(datetime(2024, month, day, tzinfo=timezone.utc))
            for month in (1, 2, 3)
            for day in (1, 15)
        ]
        policy = RetentionPolicy(daily_count=0, weekly_count=0, monthly_count=2)

        pruned = {a.timestamp for a in select_for_pruning(artifacts, policy)}
        kept = {a.timestamp for a in artifacts} - pruned

        assert kept == {
            datetime(2024, 2, 1, tzinfo=timezone.utc),
            datetime(2024, 3, 1, tzinfo=timezone.utc),
        }

    def test_nothing_to_prune_when_under_daily_count(self) -> None:
        artifacts = daily_artifacts(datetime(2024, 3, 12, tzinfo=timezone.utc), 3)

        assert select_for_pruning(artifacts, RetentionPolicy()) == []

    def test_empty_input(self) -> None:
        assert select_for_pruning([], RetentionPolicy()) == []
