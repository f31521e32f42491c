"""The sitemap → markdown zip workflow.

Five durable steps, in order:

1. ``Get Sitemap URL``        : read and check the URL from the payload.
2. ``Fetch & Parse Sitemap``  : discover up to ``MAX_LINKS`` page links.
   Never retried.
3. ``Scrape Pages``           : convert each page to markdown, serially.
4. ``Zip and Upload``         : build the archive and put it in storage.
5. ``Generate Result``        : turn the stored name into a download URL.

Every step result is plain JSON so it can be committed to the step log.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from sitezip.archive import ObjectStore, archive_name, build_archive, download_url, get_object_store
from sitezip.config import Settings, settings
from sitezip.errors import StepCancelled, ValidationError
from sitezip.scraper import fetch_sitemap_links, scrape_pages
from sitezip.scraper.extractor import scraped_pages_from
from sitezip.workflow.engine import Step, StepContext, WorkflowEngine
from sitezip.workflow.policy import BACKOFF_EXPONENTIAL, StepConfig

GET_SITEMAP_URL = "Get Sitemap URL"
FETCH_AND_PARSE_SITEMAP = "Fetch & Parse Sitemap"
SCRAPE_PAGES = "Scrape Pages"
ZIP_AND_UPLOAD = "Zip and Upload"
GENERATE_RESULT = "Generate Result"

SITEMAP_FETCH_CONFIG = StepConfig(
    retries=0,
    delay=1.0,
    backoff=BACKOFF_EXPONENTIAL,
    timeout=600.0,
)

_INVALID_URL_MESSAGE = (
    'sitemapUrl is missing or invalid. Provide it using {"sitemapUrl":"https://..."}'
)


def validate_payload(payload: Any) -> dict[str, Any]:
    """Return the stored form of a create request.

    Raises:
        ValidationError: Unless *payload* is an object with a non-empty
            string ``sitemapUrl``.
    """
    if not isinstance(payload, dict):
        raise ValidationError(_INVALID_URL_MESSAGE)
    url = payload.get("sitemapUrl")
    if not isinstance(url, str) or not url.strip():
        raise ValidationError(_INVALID_URL_MESSAGE)
    return {"sitemapUrl": url.strip()}


class SitemapWorkflow:
    """Step handlers bound to their collaborators.

    Args:
        store: Object store receiving the archive.
        config: Settings source for the public URL and scraping options.
        sitemap_client: Optional ``httpx.Client`` for the sitemap fetch.
        scrape_client: Optional ``httpx.Client`` for the extraction API.
        sleep: Pause between scrape requests.
        clock: Returns the current time; drives the archive timestamp.
    """

    def __init__(
        self,
        store: Optional[ObjectStore] = None,
        config: Optional[Settings] = None,
        sitemap_client: Optional[httpx.Client] = None,
        scrape_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config or settings
        self.store = store or get_object_store(self.config)
        self.sitemap_client = sitemap_client
        self.scrape_client = scrape_client
        self.sleep = sleep
        self.clock = clock

    def steps(self) -> list[Step]:
        return [
            Step(GET_SITEMAP_URL, self.get_sitemap_url),
            Step(FETCH_AND_PARSE_SITEMAP, self.fetch_and_parse, SITEMAP_FETCH_CONFIG),
            Step(SCRAPE_PAGES, self.scrape),
            Step(ZIP_AND_UPLOAD, self.zip_and_upload),
            Step(GENERATE_RESULT, self.generate_result),
        ]

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------
    def get_sitemap_url(self, ctx: StepContext) -> str:
        return validate_payload(ctx.payload)["sitemapUrl"]

    def fetch_and_parse(self, ctx: StepContext) -> list[str]:
        return fetch_sitemap_links(
            ctx.result(GET_SITEMAP_URL),
            client=self.sitemap_client,
            limit=self.config.max_links,
            config=self.config,
        )

    def scrape(self, ctx: StepContext) -> dict[str, Any]:
        report = scrape_pages(
            ctx.result(FETCH_AND_PARSE_SITEMAP),
            client=self.scrape_client,
            sleep=self.sleep,
            delay=self.config.scrape_delay,
            config=self.config,
            cancel=ctx.cancel,
        )
        return {
            "pages": [p.to_dict() for p in report.pages],
            "skipped": [
                {"url": s.url, "reason": s.reason, "status_code": s.status_code}
                for s in report.skipped
            ],
        }

    def zip_and_upload(self, ctx: StepContext) -> dict[str, Any]:
        pages = scraped_pages_from(ctx.result(SCRAPE_PAGES)["pages"])
        name = archive_name(
            ctx.result(GET_SITEMAP_URL), now=self.clock(), instance_id=ctx.instance_id
        )
        artifact = build_archive(name, pages)
        if ctx.cancel.is_set():
            raise StepCancelled(f"Upload of {artifact.name} cancelled")
        self.store.put(artifact.name, artifact.data)
        return {
            "archive_name": artifact.name,
            "files": list(artifact.files),
            "size": artifact.size,
        }

    def generate_result(self, ctx: StepContext) -> dict[str, str]:
        name = ctx.result(ZIP_AND_UPLOAD)["archive_name"]
        return {"downloadUrl": download_url(name, self.config.public_base_url)}


def build_engine(
    workflow: Optional[SitemapWorkflow] = None,
    db_path: Optional[Path] = None,
    max_workers: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> WorkflowEngine:
    """Engine running the sitemap workflow with the configured defaults."""
    workflow = workflow or SitemapWorkflow()
    return WorkflowEngine(
        workflow.steps(),
        validate=validate_payload,
        db_path=db_path,
        max_workers=workflow.config.workflow_workers if max_workers is None else max_workers,
        sleep=sleep,
    )
