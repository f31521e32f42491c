"""Object storage for finished archives.

Two backends are provided:

- :class:`LocalObjectStore` writes under a directory on disk (default).
- :class:`S3ObjectStore` uploads with boto3 to S3 or any S3-compatible
  endpoint (Cloudflare R2, MinIO, ...).

Either the whole blob is stored or :class:`~sitezip.errors.StorageFailure`
is raised.  The public URL depends on the archive name alone.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sitezip.config import Settings, settings
from sitezip.errors import StorageFailure

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


class ObjectStore(Protocol):
    def put(self, name: str, data: bytes, content_type: str = ZIP_CONTENT_TYPE) -> None:
        ...


class LocalObjectStore:
    """Store objects as files below *root*; ``/`` in names become sub-directories."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        path = (self.root / name).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageFailure(f"Object name escapes the store: {name!r}")
        return path

    def put(self, name: str, data: bytes, content_type: str = ZIP_CONTENT_TYPE) -> None:
        path = self.path_for(name)
        tmp = path.with_name(path.name + ".part")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            tmp.replace(path)
        except OSError as exc:
            if tmp.exists():
                tmp.unlink()
            raise StorageFailure(f"Failed to write {name!r}: {exc}") from exc
        logger.info("Stored %s (%d bytes) in %s", name, len(data), self.root)


class S3ObjectStore:
    """Upload objects to an S3 bucket."""

    def __init__(self, bucket: str, endpoint_url: Optional[str] = None, client=None) -> None:
        if not bucket:
            raise StorageFailure("S3_BUCKET is not configured")
        self.bucket = bucket
        self._client = client or boto3.client("s3", endpoint_url=endpoint_url)

    def put(self, name: str, data: bytes, content_type: str = ZIP_CONTENT_TYPE) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=name,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to upload s3://%s/%s: %s", self.bucket, name, exc)
            raise StorageFailure(f"Failed to upload {name!r}: {exc}") from exc
        logger.info("Uploaded s3://%s/%s (%d bytes)", self.bucket, name, len(data))


def get_object_store(config: Optional[Settings] = None) -> ObjectStore:
    """Build the backend selected by ``STORAGE_BACKEND``."""
    config = config or settings
    backend = config.storage_backend.lower()
    if backend == "local":
        return LocalObjectStore(config.archive_dir)
    if backend == "s3":
        return S3ObjectStore(config.s3_bucket, endpoint_url=config.s3_endpoint_url)
    raise ValueError(f"Unknown STORAGE_BACKEND {config.storage_backend!r}. Use: local | s3")


def download_url(name: str, base_url: Optional[str] = None) -> str:
    """Public URL for a stored archive."""
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/{name}"
