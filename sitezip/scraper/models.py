"""Data models for the scraper pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, List, Optional


@dataclass(frozen=True)
class ScrapedPage:
    """Markdown returned by the extraction API for one URL."""

    file_name: str
    content: str
    source_url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScrapedPage:
        return cls(
            file_name=data["file_name"],
            content=data["content"],
            source_url=data["source_url"],
        )


@dataclass(frozen=True)
class PageSkip:
    """A URL the extraction API could not convert."""

    url: str
    reason: str
    status_code: Optional[int] = None


@dataclass
class ScrapeReport:
    """Successes and skips accumulated over one serial scraping pass."""

    pages: List[ScrapedPage] = field(default_factory=list)
    skipped: List[PageSkip] = field(default_factory=list)

    @property
    def file_names(self) -> List[str]:
        return [p.file_name for p in self.pages]
