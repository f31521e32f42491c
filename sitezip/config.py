"""Centralised settings for the sitezip service.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (one level up from this package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Workspace / storage
    # ------------------------------------------------------------------
    workspace_dir: Path = field(
        default_factory=lambda: Path(
            os.environ.get("SITEZIP_WORKSPACE", Path.home() / ".sitezip")
        )
    )

    @property
    def db_path(self) -> Path:
        """Absolute path to the SQLite workflow database."""
        return self.workspace_dir / "workflows.db"

    @property
    def schema_path(self) -> Path:
        """Absolute path to the schema SQL file bundled with the package."""
        return Path(__file__).resolve().parent / "db" / "schema.sql"

    @property
    def archive_dir(self) -> Path:
        """Directory used by the local object store."""
        return self.workspace_dir / "archives"

    storage_backend: str = field(
        default_factory=lambda: os.environ.get("STORAGE_BACKEND", "local")
    )
    s3_bucket: str = field(default_factory=lambda: os.environ.get("S3_BUCKET", ""))
    s3_endpoint_url: str | None = field(
        default_factory=lambda: os.environ.get("S3_ENDPOINT_URL") or None
    )
    public_base_url: str = field(
        default_factory=lambda: os.environ.get(
            "PUBLIC_BASE_URL", "https://downloads.example.com"
        )
    )

    # ------------------------------------------------------------------
    # Sitemap / scraper
    # ------------------------------------------------------------------
    scraping_api_url: str = field(
        default_factory=lambda: os.environ.get(
            "SCRAPING_API_URL", "https://api.citation-media.com/v1/scraping/fetch"
        )
    )
    scraping_api_token: str = field(
        default_factory=lambda: os.environ.get("SCRAPING_API_TOKEN", "")
    )
    scrape_delay: float = field(
        default_factory=lambda: float(os.environ.get("SCRAPE_DELAY", "3.0"))
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("REQUEST_TIMEOUT", "30.0"))
    )
    max_links: int = field(
        default_factory=lambda: int(os.environ.get("MAX_LINKS", "10"))
    )

    # ------------------------------------------------------------------
    # Workflow execution
    # ------------------------------------------------------------------
    workflow_workers: int = field(
        default_factory=lambda: int(os.environ.get("WORKFLOW_WORKERS", "2"))
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )


def configure_logging(level: str | None = None) -> None:
    """Install a basic stdout handler for the ``sitezip`` loggers."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Module-level singleton, import this everywhere:
#   from sitezip.config import settings
settings = Settings()
