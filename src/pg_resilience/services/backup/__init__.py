# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Backup creation, verification, retention and upload."""

from .backup_service import BackupConfig, BackupService
from .retention import RetentionPolicy, select_for_pruning
from .storage import ObjectStorageUploader

__all__ = [
    "BackupConfig",
    "BackupService",
    "ObjectStorageUploader",
    "RetentionPolicy",
    "select_for_pruning",
]
