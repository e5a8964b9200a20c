"""Public result schemas returned by database operations."""

from .backup import (
    BackupArtifact,
    BackupListItem,
    BackupResult,
    BackupStats,
    BackupStatsView,
)
from .load_test import (
    ConnectionLimitResult,
    LoadTestConfig,
    LoadTestErrorCount,
    LoadTestResult,
    PoolHealthReport,
    PoolHealthSample,
    QueryType,
)
from .monitoring import (
    ReplicaHealth,
    ReplicaHealthReport,
    SlowQueryReport,
    SlowQuerySummary,
)
from .recovery import (
    RecoveryPoint,
    RecoveryPointView,
    RecoveryTestResult,
    RestoreOptions,
    RestoreResult,
)

__all__ = [
    "BackupArtifact",
    "BackupListItem",
    "BackupResult",
    "BackupStats",
    "BackupStatsView",
    "ConnectionLimitResult",
    "LoadTestConfig",
    "LoadTestErrorCount",
    "LoadTestResult",
    "PoolHealthReport",
    "PoolHealthSample",
    "QueryType",
    "RecoveryPoint",
    "RecoveryPointView",
    "RecoveryTestResult",
    "ReplicaHealth",
    "ReplicaHealthReport",
    "RestoreOptions",
    "RestoreResult",
    "SlowQueryReport",
    "SlowQuerySummary",
]
