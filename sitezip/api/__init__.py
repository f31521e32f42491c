"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from sitezip.api import app

    uvicorn sitezip.api:app
"""

from sitezip.api.app import app, create_app

__all__ = ["app", "create_app"]
