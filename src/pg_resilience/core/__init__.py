# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Core infrastructure components for pg-resilience."""

from .config import Settings, get_settings
from .connection import ConnectionDescriptor
from .database import Database, PoolConfig
from .result_types import Err, Ok, Result

__all__ = [
    "ConnectionDescriptor",
    "Database",
    "Err",
    "Ok",
    "PoolConfig",
    "Result",
    "Settings",
    "get_settings",
]
