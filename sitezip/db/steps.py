"""The durable step log (``workflow_steps`` table).

A row is written exactly once, when a step commits.  Its presence is what
tells the engine to skip the step on a later run of the same instance.
"""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Any, Optional

from sitezip.db.models import StepRecord


def _row_to_record(row: sqlite3.Row) -> StepRecord:
    return StepRecord(
        instance_id=row["instance_id"],
        step_name=row["step_name"],
        result=json.loads(row["result"]),
        attempts=row["attempts"],
        committed_at=row["committed_at"],
    )


def commit_step(
    conn: sqlite3.Connection,
    instance_id: str,
    step_name: str,
    result: Any,
    attempts: int = 1,
) -> StepRecord:
    """Persist a step result.

    Raises:
        sqlite3.IntegrityError: If the step was already committed for this
            instance.  Committed results are never overwritten.
    """
    with conn:
        conn.execute(
            """
            INSERT INTO workflow_steps (instance_id, step_name, result, attempts, committed_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (instance_id, step_name, json.dumps(result), attempts, int(time())),
        )
    return get_step(conn, instance_id, step_name)  # type: ignore[return-value]


def get_step(conn: sqlite3.Connection, instance_id: str, step_name: str) -> Optional[StepRecord]:
    """Return the committed record for a step, or ``None``."""
    row = conn.execute(
        "SELECT * FROM workflow_steps WHERE instance_id = ? AND step_name = ?",
        (instance_id, step_name),
    ).fetchone()
    return _row_to_record(row) if row else None


def list_steps(conn: sqlite3.Connection, instance_id: str) -> list[StepRecord]:
    """All committed steps for an instance, in commit order."""
    rows = conn.execute(
        "SELECT * FROM workflow_steps WHERE instance_id = ? ORDER BY committed_at, rowid",
        (instance_id,),
    ).fetchall()
    return [_row_to_record(r) for r in rows]
