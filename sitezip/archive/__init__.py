"""Archive packaging and object storage."""

from sitezip.archive.builder import ArchiveArtifact, archive_name, build_archive
from sitezip.archive.storage import (
    LocalObjectStore,
    ObjectStore,
    S3ObjectStore,
    download_url,
    get_object_store,
)

__all__ = [
    "ArchiveArtifact",
    "archive_name",
    "build_archive",
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "get_object_store",
    "download_url",
]
