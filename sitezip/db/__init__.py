"""Database layer package.

Public re-exports so callers can write::

    from sitezip.db import get_connection, init_db
    from sitezip.db import instances, steps
"""

from sitezip.db.connection import get_connection
from sitezip.db.migrations import init_db
from sitezip.db import instances, steps

__all__ = ["get_connection", "init_db", "instances", "steps"]
