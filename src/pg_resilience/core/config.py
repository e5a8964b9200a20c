# PgResilience - Database Operations & Resilience Toolkit
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Configuration management using Pydantic Settings."""

import os
from collections.abc import Mapping

from beartype import beartype
from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

REPLICA_URL_PREFIX = "READ_REPLICA_URL"


class Settings(BaseSettings):
    """Application settings with immutable configuration."""

    model_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        frozen=True,  # Immutable settings
        validate_default=True,
        extra="forbid",
    )

    # Database
    database_url: str = Field(
        ...,
        description="PostgreSQL connection URL of the primary",
        min_length=1,
    )
    database_pool_min: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Minimum database pool size",
    )
    database_pool_max: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum database pool size",
    )
    database_pool_timeout: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Connection acquisition timeout in seconds",
    )
    database_command_timeout: float = Field(
        default=60.0,
        ge=5.0,
        le=3600.0,
        description="Query execution timeout in seconds",
    )
    read_replica_url: str | None = Field(
        default=None,
        description="Single read replica URL, used when no numbered replicas exist",
    )

    # Backups
    backup_dir: str = Field(
        default="/var/backups/postgresql",
        min_length=1,
        description="Directory holding backup artifacts",
    )
    backup_compression: bool = Field(
        default=True,
        description="Gzip backup artifacts",
    )
    backup_upload_enabled: bool = Field(
        default=True,
        description="Upload verified backups to object storage",
    )
    backup_notify_on_failure: bool = Field(
        default=True,
        description="Emit a failure notification when a backup fails",
    )
    backup_retention_daily: int = Field(default=7, ge=0, le=365)
    backup_retention_weekly: int = Field(default=4, ge=0, le=520)
    backup_retention_monthly: int = Field(default=3, ge=0, le=120)
    backup_schedule_hour: int = Field(
        default=2,
        ge=0,
        le=23,
        description="UTC hour of the daily backup job",
    )
    backup_schedule_minute: int = Field(
        default=0,
        ge=0,
        le=59,
        description="UTC minute of the daily backup job",
    )
    recovery_dry_run_enabled: bool = Field(
        default=True,
        description="Restore into a throwaway database during recovery tests",
    )

    # Object storage
    s3_endpoint: str = Field(
        default="http://localhost:9000",
        description="S3 compatible endpoint URL",
    )
    s3_region: str = Field(default="us-east-1")
    s3_access_key: str | None = Field(default=None)
    s3_secret_key: str | None = Field(default=None)
    s3_bucket_prod: str = Field(default="pg-resilience-prod", min_length=3)
    s3_bucket_dev: str = Field(default="pg-resilience-dev", min_length=3)

    # Slow query monitoring
    slow_query_threshold_ms: float = Field(
        default=1000.0,
        gt=0,
        description="Duration above which a query is logged as slow",
    )
    slow_query_critical_ms: float = Field(
        default=5000.0,
        gt=0,
        description="Duration above which a slow query raises a critical alert",
    )
    slow_query_log_to_database: bool = Field(default=True)

    # Runtime
    app_env: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Deployment environment",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Celery broker URL",
        min_length=1,
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
    )

    @field_validator("database_pool_max")
    @classmethod
    def validate_pool_sizes(cls: type["Settings"], v: int, info: ValidationInfo) -> int:
        """Ensure pool max is greater than pool min."""
        if "database_pool_min" in info.data:
            min_size = info.data["database_pool_min"]
            if v < min_size:
                raise ValueError(
                    f"database_pool_max ({v}) must be >= database_pool_min ({min_size})"
                )
        return v

    @field_validator("slow_query_critical_ms")
    @classmethod
    def validate_thresholds(
        cls: type["Settings"], v: float, info: ValidationInfo
    ) -> float:
        """Critical threshold can never be below the warning threshold."""
        if "slow_query_threshold_ms" in info.data:
            warning = info.data["slow_query_threshold_ms"]
            if v < warning:
                raise ValueError(
                    f"slow_query_critical_ms ({v}) must be >= "
                    f"slow_query_threshold_ms ({warning})"
                )
        return v

    @property
    @beartype
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    @beartype
    def s3_bucket(self) -> str:
        """Bucket selected for the current environment."""
        return self.s3_bucket_prod if self.is_production else self.s3_bucket_dev


@beartype
def discover_replica_urls(environ: Mapping[str, str] | None = None) -> list[str]:
    """Collect replica URLs from ``READ_REPLICA_URL_1..N``.

    Numbering stops at the first gap. When no numbered variable is set the
    single ``READ_REPLICA_URL`` is used instead.
    """
    env = os.environ if environ is None else environ
    urls: list[str] = []
    index = 1
    while True:
        url = env.get(f"{REPLICA_URL_PREFIX}_{index}")
        if not url:
            break
        urls.append(url)
        index += 1

    if not urls and env.get(REPLICA_URL_PREFIX):
        urls.append(env[REPLICA_URL_PREFIX])

    return urls


_settings: Settings | None = None


@beartype
def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


@beartype
def clear_settings_cache() -> None:
    """Clear settings cache (for testing)."""
    global _settings
    _settings = None
