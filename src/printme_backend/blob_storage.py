"""
Blob storage for uploaded document bytes.

Documents are stored in S3 when a bucket is configured via S3_BUCKET_NAME.
When running locally without a bucket, bytes are written to a local
directory instead and addressed with file:// URLs, so the rest of the
service behaves the same way in development.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .configuration import StorageSettings
from .errors import StorageError
from .utils import ensure_directory, sanitize_filename

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredBlob:
    blob_name: str
    url: str


class BlobStorage:
    """
    Stores and retrieves document bytes by blob name.

    Attributes:
        bucket: S3 bucket name, or None for the local directory fallback
        prefix: Key prefix for objects in the bucket
        local_dir: Directory used when no bucket is configured
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        prefix: str = "",
        local_dir: Path = Path("data/uploads"),
        client=None,
    ) -> None:
        self.bucket = bucket or None
        self.prefix = prefix
        self.local_dir = Path(local_dir)
        self._client = client

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "BlobStorage":
        return cls(bucket=settings.bucket, prefix=settings.prefix, local_dir=Path(settings.local_dir))

    @property
    def is_remote(self) -> bool:
        return self.bucket is not None

    def _get_client(self):
        """
        Get or create the S3 client.

        Note:
            Credential problems surface on the first real operation rather
            than here, so the service can start without probing S3.
        """
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _key(self, blob_name: str) -> str:
        return f"{self.prefix}{blob_name}"

    def _local_path(self, blob_name: str) -> Path:
        # Blob names are generated by us, but never let one escape the directory.
        return self.local_dir / sanitize_filename(blob_name, fallback="blob")

    def put(self, data: bytes, blob_name: str, content_type: str = "application/pdf") -> StoredBlob:
        """
        Store bytes under a blob name.

        Returns:
            StoredBlob with the name and a location URL (s3:// or file://)

        Raises:
            StorageError: If the write fails
        """
        if not self.is_remote:
            path = ensure_directory(self.local_dir) / sanitize_filename(blob_name, fallback="blob")
            try:
                path.write_bytes(data)
            except OSError as e:
                raise StorageError(detail=f"Local blob write failed for {blob_name}: {e}") from e
            logger.info(f"Stored blob locally: {path}")
            return StoredBlob(blob_name=path.name, url=path.resolve().as_uri())

        key = self._key(blob_name)
        try:
            logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{key}")
            self._get_client().put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed: {e}")
            raise StorageError(detail=f"S3 upload failed for {blob_name}: {e}") from e
        return StoredBlob(blob_name=blob_name, url=f"s3://{self.bucket}/{key}")

    def get(self, blob_name: str) -> bytes:
        """
        Read the bytes stored under a blob name.

        Raises:
            StorageError: If the blob is missing or cannot be read
        """
        if not self.is_remote:
            try:
                return self._local_path(blob_name).read_bytes()
            except OSError as e:
                raise StorageError(detail=f"Local blob read failed for {blob_name}: {e}") from e

        key = self._key(blob_name)
        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 download failed for s3://{self.bucket}/{key}: {e}")
            raise StorageError(detail=f"S3 download failed for {blob_name}: {e}") from e
