"""Sitemap fetching and link discovery.

Only links already listed in the document are returned: ``<loc>`` entries
of a standard sitemap, then ``<a href>`` targets for HTML link listings.
Nothing is crawled.
"""

from __future__ import annotations

import html
import logging
import re
from typing import List, Optional
from urllib.parse import urljoin

import httpx

from sitezip.config import Settings, settings
from sitezip.errors import EmptyResult, FetchFailure

logger = logging.getLogger(__name__)

_LOC_PATTERN = re.compile(r"<loc>(.*?)</loc>", re.DOTALL)
_ANCHOR_PATTERN = re.compile(r'<a\s+href="(.*?)"')

_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; sitezip/1.0; +https://github.com/sitezip)"
}


def _normalise(raw: str, base_url: str) -> str:
    return urljoin(base_url, html.unescape(raw.strip()))


def parse_sitemap_links(text: str, base_url: str, limit: Optional[int] = None) -> List[str]:
    """Return unique links from *text* in first-seen order.

    ``<loc>`` matches come first, anchor matches second.  Relative anchors
    are resolved against *base_url*.  At most *limit* links are returned
    (``settings.max_links`` when omitted).
    """
    limit = settings.max_links if limit is None else limit

    candidates = [m.group(1) for m in _LOC_PATTERN.finditer(text)]
    candidates += [m.group(1) for m in _ANCHOR_PATTERN.finditer(text)]

    seen: set[str] = set()
    links: List[str] = []
    for raw in candidates:
        if not raw.strip():
            continue
        link = _normalise(raw, base_url)
        if link not in seen:
            seen.add(link)
            links.append(link)

    return links[:limit]


def fetch_sitemap_links(
    url: str,
    client: Optional[httpx.Client] = None,
    limit: Optional[int] = None,
    config: Optional[Settings] = None,
) -> List[str]:
    """Fetch the sitemap at *url* and return its page links.

    Raises:
        FetchFailure: If the server answers with a non-2xx status.
        EmptyResult: If the document contains no links at all.
    """
    config = config or settings
    owns_client = client is None
    if client is None:
        client = httpx.Client(
            headers=_DEFAULT_HEADERS,
            timeout=config.request_timeout,
            follow_redirects=True,
        )

    try:
        response = client.get(url)
    finally:
        if owns_client:
            client.close()

    if not response.is_success:
        raise FetchFailure(response.status_code, response.reason_phrase)

    limit = config.max_links if limit is None else limit
    links = parse_sitemap_links(response.text, url, limit=limit)
    if not links:
        raise EmptyResult("No URLs found in sitemap.")

    logger.info("Discovered %d link(s) in %s", len(links), url)
    return links
