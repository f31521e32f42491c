"""Zip packaging of scraped pages."""

from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence
from urllib.parse import urlparse

from sitezip.scraper.models import ScrapedPage

_UNSAFE = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class ArchiveArtifact:
    name: str
    data: bytes
    files: tuple[str, ...]

    @property
    def size(self) -> int:
        return len(self.data)


def _timestamp(now: datetime) -> str:
    """``2024-05-01T12:30:00.123Z`` with ``:`` and ``.`` replaced by ``-``."""
    stamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    stamp = stamp.replace("+00:00", "Z")
    return stamp.replace(":", "-").replace(".", "-")


def archive_name(
    sitemap_url: str,
    now: Optional[datetime] = None,
    instance_id: Optional[str] = None,
) -> str:
    """Storage name for a run's archive.

    ``https://example.com/sitemap.xml`` → ``example_com_<timestamp>.zip``.
    With *instance_id* the name is placed under ``<instance_id>/`` so two
    runs for the same host in the same millisecond cannot collide.
    """
    host = _UNSAFE.sub("_", urlparse(sitemap_url).netloc)
    name = f"{host}_{_timestamp(now or datetime.now(timezone.utc))}.zip"
    if instance_id:
        name = f"{instance_id}/{name}"
    return name


def build_archive(name: str, pages: Sequence[ScrapedPage]) -> ArchiveArtifact:
    """Pack *pages* into one zip, entries in input order.

    A file name repeated in *pages* keeps only its last content.
    """
    entries: dict[str, bytes] = {}
    for page in pages:
        entries[page.file_name] = page.content.encode("utf-8")

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for file_name, content in entries.items():
            zf.writestr(file_name, content)

    return ArchiveArtifact(name=name, data=buffer.getvalue(), files=tuple(entries))
