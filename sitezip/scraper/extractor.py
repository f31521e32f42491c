"""Markdown conversion through the external content-extraction API.

Pages are requested one at a time with a fixed pause between requests so
the API's rate limit is respected.  A page the API cannot convert is
skipped; the pass only fails when nothing at all could be converted.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from typing import Any, Callable, Iterable, List, Optional
from urllib.parse import urlparse

import httpx

from sitezip.config import Settings, settings
from sitezip.errors import AllPagesFailed, StepCancelled
from sitezip.scraper.models import PageSkip, ScrapedPage, ScrapeReport

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSION = ".md"
FALLBACK_NAME = "index"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _extraction_body(url: str) -> dict[str, Any]:
    return {
        "url": url,
        "contextSelector": "",
        "markdown": {
            "images": False,
            "links": {
                "type": "ALL",
                "resourceLinks": True,
                "includeAnchors": True,
            },
        },
    }


def file_name_for(url: str) -> str:
    """``https://example.com/docs/intro/`` → ``intro.md``; bare hosts → ``index.md``."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    stem = segments[-1] if segments else FALLBACK_NAME
    return stem + DOCUMENT_EXTENSION


def _disambiguate(file_name: str, url: str, taken: set[str]) -> str:
    """Suffix *file_name* with a short URL hash when it is already in use."""
    if file_name not in taken:
        return file_name
    stem = file_name[: -len(DOCUMENT_EXTENSION)]
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:8]
    return f"{stem}-{digest}{DOCUMENT_EXTENSION}"


def _stop_if_cancelled(cancel: Optional[threading.Event], url: str) -> None:
    if cancel is not None and cancel.is_set():
        raise StepCancelled(f"Scraping cancelled before {url}")


def _convert(client: httpx.Client, api_url: str, url: str) -> str | PageSkip:
    """Request markdown for one URL; a :class:`PageSkip` on any failure."""
    try:
        response = client.post(api_url, json=_extraction_body(url))
    except httpx.TransportError as exc:
        return PageSkip(url=url, reason=f"transport error: {exc}")

    if not response.is_success:
        return PageSkip(
            url=url,
            reason=f"HTTP {response.status_code}",
            status_code=response.status_code,
        )

    try:
        markdown = response.json().get("markdown")
    except (ValueError, AttributeError):
        markdown = None
    if not isinstance(markdown, str):
        return PageSkip(
            url=url,
            reason="response has no markdown",
            status_code=response.status_code,
        )
    return markdown


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def scrape_pages(
    urls: Iterable[str],
    client: Optional[httpx.Client] = None,
    sleep: Callable[[float], None] = time.sleep,
    delay: Optional[float] = None,
    config: Optional[Settings] = None,
    cancel: Optional[threading.Event] = None,
) -> ScrapeReport:
    """Convert each URL to markdown, strictly one after another.

    Args:
        urls: Page URLs in processing order.
        client: Optional pre-configured ``httpx.Client``.  When omitted a
            client carrying the bearer token is created and closed here.
        sleep: Pause function, injectable for tests.
        delay: Seconds between consecutive requests
            (``config.scrape_delay`` when omitted).
        config: Settings for the API endpoint, token and timeout.
        cancel: Checked before every pause and request; once set the pass
            stops with :class:`~sitezip.errors.StepCancelled`.

    Raises:
        AllPagesFailed: If not a single page could be converted.
        StepCancelled: If *cancel* was set part-way through.
    """
    config = config or settings
    delay = config.scrape_delay if delay is None else delay
    owns_client = client is None
    if client is None:
        client = httpx.Client(
            headers={"Authorization": f"Bearer {config.scraping_api_token}"},
            timeout=config.request_timeout,
        )

    report = ScrapeReport()
    taken: set[str] = set()
    try:
        for index, url in enumerate(urls):
            if index:
                _stop_if_cancelled(cancel, url)
                sleep(delay)
            _stop_if_cancelled(cancel, url)

            outcome = _convert(client, config.scraping_api_url, url)
            if isinstance(outcome, PageSkip):
                logger.warning("Failed to scrape: %s (%s)", url, outcome.reason)
                report.skipped.append(outcome)
                continue

            name = _disambiguate(file_name_for(url), url, taken)
            taken.add(name)
            report.pages.append(ScrapedPage(file_name=name, content=outcome, source_url=url))
    finally:
        if owns_client:
            client.close()

    if not report.pages:
        raise AllPagesFailed("Scraping failed for all pages.")

    logger.info(
        "Scraped %d page(s), skipped %d", len(report.pages), len(report.skipped)
    )
    return report


def scraped_pages_from(records: List[dict[str, Any]]) -> List[ScrapedPage]:
    """Rebuild pages from their committed JSON form."""
    return [ScrapedPage.from_dict(r) for r in records]
