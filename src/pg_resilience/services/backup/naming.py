"""Backup artifact naming: the one encode/decode pair for artifact timestamps.

Artifacts are named ``backup-<ISO8601>.sql[.gz]`` where the ISO 8601 UTC
timestamp has millisecond precision and its colons and dot replaced by
dashes, e.g. ``backup-2024-01-15T10-30-00-000Z.sql.gz``. Pruning and
"latest backup" resolution depend on this format, so any change here must
keep old names parseable.
"""

import re
from datetime import datetime, timezone

from beartype import beartype

BACKUP_PREFIX = "backup-"
PLAIN_SUFFIX = ".sql"
COMPRESSED_SUFFIX = ".sql.gz"

_TIMESTAMP_PATTERN = re.compile(
    r"backup-(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})-(\d{2})-(\d{3})Z"
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@beartype
def truncate_to_milliseconds(moment: datetime) -> datetime:
    """Normalize to UTC and drop sub-millisecond precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)


@beartype
def format_backup_timestamp(moment: datetime) -> str:
    """Encode ``moment`` as ``YYYY-MM-DDTHH-MM-SS-mmmZ``.

    Naive datetimes are taken to be UTC.
    """
    moment = truncate_to_milliseconds(moment)
    return f"{moment:%Y-%m-%dT%H-%M-%S}-{moment.microsecond // 1000:03d}Z"


@beartype
def parse_backup_timestamp(filename: str) -> datetime | None:
    """Decode the timestamp embedded in an artifact name, or None."""
    match = _TIMESTAMP_PATTERN.search(filename)
    if match is None:
        return None

    year, month, day, hour, minute, second, millis = (int(g) for g in match.groups())
    try:
        return datetime(
            year,
            month,
            day,
            hour,
            minute,
            second,
            millis * 1000,
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None


@beartype
def backup_filename(moment: datetime, *, compressed: bool = False) -> str:
    """Artifact file name for a backup started at ``moment``."""
    suffix = COMPRESSED_SUFFIX if compressed else PLAIN_SUFFIX
    return f"{BACKUP_PREFIX}{format_backup_timestamp(moment)}{suffix}"


@beartype
def is_backup_filename(filename: str) -> bool:
    """Whether a directory entry looks like a backup artifact."""
    return filename.startswith(BACKUP_PREFIX) and (
        filename.endswith(PLAIN_SUFFIX) or filename.endswith(COMPRESSED_SUFFIX)
    )


@beartype
def is_compressed(filename: str) -> bool:
    """Whether an artifact name denotes a gzip container."""
    return filename.endswith(".gz")
