"""Database initialisation.

``init_db(conn)`` is idempotent, so it is safe to call on an existing database.
"""

from __future__ import annotations

import sqlite3

from sitezip.config import settings


def init_db(conn: sqlite3.Connection) -> None:
    """Create the workflow tables and indexes.

    Every DDL statement uses ``IF NOT EXISTS`` so calling this repeatedly on
    the same database is safe.
    """
    sql = settings.schema_path.read_text(encoding="utf-8")
    conn.executescript(sql)
