"""Dataclass models representing DB rows.

These are plain Python objects – not ORM models.  The DB layer serialises /
deserialises to and from these types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

QUEUED = "queued"
RUNNING = "running"
COMPLETE = "complete"
ERRORED = "errored"

TERMINAL_STATUSES = frozenset({COMPLETE, ERRORED})


@dataclass
class WorkflowInstance:
    id: str
    status: str
    payload: dict[str, Any]
    output: Any
    error: str | None
    current_step: str | None
    created_at: int
    updated_at: int

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Public view returned by the status endpoint and the CLI."""
        return {
            "id": self.id,
            "status": self.status,
            "error": self.error,
            "output": self.output,
        }


@dataclass
class StepRecord:
    instance_id: str
    step_name: str
    result: Any
    attempts: int
    committed_at: int
