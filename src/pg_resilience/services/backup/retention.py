"""Daily / weekly / monthly retention of backup artifacts.

Rules, applied to artifacts ordered newest first:

1. The ``daily_count`` most recent artifacts are always kept, whatever their age.
2. The first (oldest) artifact of an ISO week is kept if that week is one of
   the ``weekly_count`` most recent weeks that have artifacts.
3. The first artifact of a calendar month is kept if that month is one of the
   ``monthly_count`` most recent months that have artifacts.

Everything else is pruned. Weeks and months are computed in UTC.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from attrs import field, frozen
from beartype import beartype

from ...core.errors import ConfigurationError
from ...schemas.backup import BackupArtifact


def _non_negative(instance: object, attribute: object, value: int) -> None:
    if value < 0:
        name = getattr(attribute, "name", "count")
        raise ConfigurationError(f"Retention {name} must be >= 0, got {value}")


@frozen
class RetentionPolicy:
    """How many artifacts of each tier survive pruning."""

    daily_count: int = field(default=7, validator=_non_negative)
    weekly_count: int = field(default=4, validator=_non_negative)
    monthly_count: int = field(default=3, validator=_non_negative)


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _week_key(moment: datetime) -> tuple[int, int]:
    iso = _utc(moment).isocalendar()
    return (iso[0], iso[1])


def _month_key(moment: datetime) -> tuple[int, int]:
    moment = _utc(moment)
    return (moment.year, moment.month)


def _first_of_recent_periods(
    artifacts: Sequence[BackupArtifact],
    key: Callable[[datetime], tuple[int, int]],
    periods: int,
) -> set[str]:
    """Names of the oldest artifact in each of the ``periods`` newest periods."""
    if periods == 0:
        return set()

    first_by_period: dict[tuple[int, int], BackupArtifact] = {}
    for artifact in artifacts:
        period = key(artifact.timestamp)
        current = first_by_period.get(period)
        if current is None or _utc(artifact.timestamp) < _utc(current.timestamp):
            first_by_period[period] = artifact

    recent = sorted(first_by_period, reverse=True)[:periods]
    return {first_by_period[period].name for period in recent}


@beartype
def select_for_pruning(
    artifacts: Sequence[BackupArtifact], policy: RetentionPolicy
) -> list[BackupArtifact]:
    """Return the artifacts the policy does not retain, newest first."""
    ordered = sorted(artifacts, key=lambda a: _utc(a.timestamp), reverse=True)

    keep_weekly = _first_of_recent_periods(ordered, _week_key, policy.weekly_count)
    keep_monthly = _first_of_recent_periods(ordered, _month_key, policy.monthly_count)

    doomed: list[BackupArtifact] = []
    for position, artifact in enumerate(ordered):
        if position < policy.daily_count:
            continue
        if artifact.name in keep_weekly or artifact.name in keep_monthly:
            continue
        doomed.append(artifact)
    return doomed
