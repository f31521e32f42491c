"""CRUD operations for the ``workflow_instances`` table."""

from __future__ import annotations

import json
import sqlite3
import uuid
from time import time
from typing import Any, Optional

from sitezip.db.models import QUEUED, RUNNING, WorkflowInstance


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_instance(row: sqlite3.Row) -> WorkflowInstance:
    return WorkflowInstance(
        id=row["id"],
        status=row["status"],
        payload=json.loads(row["payload"] or "{}"),
        output=json.loads(row["output"]) if row["output"] is not None else None,
        error=row["error"],
        current_step=row["current_step"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_instance(
    conn: sqlite3.Connection,
    payload: dict[str, Any],
    instance_id: Optional[str] = None,
) -> WorkflowInstance:
    """Insert a new ``queued`` instance and return it.

    Args:
        conn: Open DB connection.
        payload: The validated workflow parameters, stored as JSON.
        instance_id: Explicit UUID override (auto-generated when omitted).
    """
    iid = instance_id or str(uuid.uuid4())
    now = int(time())

    with conn:
        conn.execute(
            """
            INSERT INTO workflow_instances (id, status, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (iid, QUEUED, json.dumps(payload), now, now),
        )

    return get_instance(conn, iid)  # type: ignore[return-value]


def get_instance(conn: sqlite3.Connection, instance_id: str) -> Optional[WorkflowInstance]:
    """Fetch a single instance by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM workflow_instances WHERE id = ?", (instance_id,)
    ).fetchone()
    return _row_to_instance(row) if row else None


def update_instance(conn: sqlite3.Connection, instance_id: str, **kwargs: Any) -> WorkflowInstance:
    """Update one or more fields on an instance.

    Allowed keyword arguments: ``status``, ``output`` (JSON-serialisable),
    ``error``, ``current_step``.  ``updated_at`` is always refreshed.

    Raises:
        ValueError: If ``instance_id`` does not exist or no valid fields are given.
    """
    if get_instance(conn, instance_id) is None:
        raise ValueError(f"Instance not found: {instance_id!r}")

    allowed = {"status", "output", "error", "current_step"}
    updates: dict[str, Any] = {}
    for key, value in kwargs.items():
        if key not in allowed:
            raise ValueError(f"Cannot update field {key!r}")
        if key == "output":
            updates["output"] = json.dumps(value) if value is not None else None
        else:
            updates[key] = value

    if not updates:
        raise ValueError("No valid fields provided to update_instance()")

    updates["updated_at"] = int(time())
    set_clause = ", ".join(f"{col} = ?" for col in updates)
    values = list(updates.values()) + [instance_id]

    with conn:
        conn.execute(
            f"UPDATE workflow_instances SET {set_clause} WHERE id = ?", values  # noqa: S608
        )

    return get_instance(conn, instance_id)  # type: ignore[return-value]


def list_instances(
    conn: sqlite3.Connection,
    statuses: Optional[list[str]] = None,
) -> list[WorkflowInstance]:
    """Return instances oldest first, optionally filtered by status."""
    if statuses:
        placeholders = ", ".join("?" for _ in statuses)
        rows = conn.execute(
            f"SELECT * FROM workflow_instances WHERE status IN ({placeholders}) "  # noqa: S608
            "ORDER BY created_at, rowid",
            statuses,
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM workflow_instances ORDER BY created_at, rowid"
        ).fetchall()
    return [_row_to_instance(r) for r in rows]


def list_incomplete(conn: sqlite3.Connection) -> list[WorkflowInstance]:
    """Instances that have not reached a terminal status."""
    return list_instances(conn, statuses=[QUEUED, RUNNING])
