"""Scraper package — sitemap link discovery & markdown extraction."""

from sitezip.scraper.extractor import file_name_for, scrape_pages
from sitezip.scraper.models import PageSkip, ScrapedPage, ScrapeReport
from sitezip.scraper.sitemap import fetch_sitemap_links, parse_sitemap_links

__all__ = [
    "fetch_sitemap_links",
    "parse_sitemap_links",
    "scrape_pages",
    "file_name_for",
    "ScrapedPage",
    "PageSkip",
    "ScrapeReport",
]
