# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Database operations service layer."""

from .backup import BackupService
from .database_operations import DatabaseOperations, format_bytes
from .load_tester import ConnectionPoolLoadTester
from .recovery_service import DisasterRecoveryService
from .replica_manager import ReadReplicaManager
from .slow_query_monitor import SlowQueryMonitor

__all__ = [
    "BackupService",
    "ConnectionPoolLoadTester",
    "DatabaseOperations",
    "DisasterRecoveryService",
    "ReadReplicaManager",
    "SlowQueryMonitor",
    "format_bytes",
]
