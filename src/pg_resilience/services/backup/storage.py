"""Best-effort upload of verified backups to S3 compatible object storage."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import boto3
from beartype import beartype
from botocore.config import Config
from botocore.exceptions import ClientError

from ...core.config import Settings
from ...core.errors import UploadError
from ...core.logging_utils import get_logger
from ...core.result_types import Err, Ok, Result

OBJECT_KEY_PREFIX = "backups/database"
BACKUP_TYPE = "postgresql"

logger = get_logger(__name__)


class ObjectStorageUploader:
    """Push backup artifacts to a bucket under ``backups/database/<filename>``.

    Uploads never raise: a locally verified backup stays useful even when the
    remote copy fails, so failures are logged and returned as ``Err``.
    """

    def __init__(
        self,
        *,
        bucket: str,
        environment: str,
        endpoint_url: str | None = None,
        region: str = "us-east-1",
        access_key: str | None = None,
        secret_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize uploader; the boto3 client is created on first use."""
        self.bucket = bucket
        self.environment = environment
        self._endpoint_url = endpoint_url
        self._region = region
        self._access_key = access_key
        self._secret_key = secret_key
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorageUploader":
        """Build an uploader for the bucket of the configured environment."""
        return cls(
            bucket=settings.s3_bucket,
            environment=settings.app_env,
            endpoint_url=settings.s3_endpoint,
            region=settings.s3_region,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
        )

    @property
    def client(self) -> Any:
        """S3 client with path-style addressing (MinIO compatible)."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self._endpoint_url,
                region_name=self._region,
                aws_access_key_id=self._access_key,
                aws_secret_access_key=self._secret_key,
                config=Config(s3={"addressing_style": "path"}),
            )
        return self._client

    @staticmethod
    @beartype
    def object_key(path: Path) -> str:
        """Remote key for an artifact."""
        return f"{OBJECT_KEY_PREFIX}/{path.name}"

    @beartype
    def metadata(self) -> dict[str, str]:
        """Object metadata attached to every upload."""
        return {
            "backup-date": datetime.now(timezone.utc).isoformat(),
            "backup-type": BACKUP_TYPE,
            "environment": self.environment,
        }

    def _put(self, path: Path, key: str) -> None:
        content_type = "application/gzip" if path.name.endswith(".gz") else "application/sql"
        try:
            self.client.upload_file(
                str(path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type, "Metadata": self.metadata()},
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            raise UploadError(
                f"Failed to upload {path.name} to {self.bucket}: {code}: {e}"
            ) from e
        except Exception as e:
            # transfer failures arrive as boto3 S3UploadFailedError
            raise UploadError(f"Failed to upload {path.name} to {self.bucket}: {e}") from e

    @beartype
    async def upload(self, path: Path) -> Result[str, str]:
        """Upload ``path`` and return ``Ok("<bucket>/<key>")`` or ``Err(reason)``."""
        key = self.object_key(path)
        try:
            await asyncio.to_thread(self._put, path, key)
        except UploadError as e:
            logger.error("Backup upload failed", extra={"artifact": str(path), "error": str(e)})
            return Err(str(e))

        location = f"{self.bucket}/{key}"
        logger.info("Backup uploaded to storage", extra={"location": location})
        return Ok(location)
