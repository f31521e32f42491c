"""Durable step execution.

A workflow is a fixed, ordered list of :class:`Step` objects.  Running an
instance walks that list as a state machine whose state is the first step
without a committed record in the ``workflow_steps`` log:

- a committed step is never executed again; its stored JSON result is
  loaded instead, so a crashed or resumed run continues from where it
  stopped instead of repeating network calls;
- an uncommitted step is executed under its own :class:`StepConfig` and its
  result is committed before the next step starts;
- a step that exhausts its retries moves the instance to ``errored`` with a
  ``"<step> failed: <cause>"`` message.

Instances run on a small thread pool; each run opens its own connection.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from sitezip.db import get_connection, init_db
from sitezip.db import instances as instances_db
from sitezip.db import steps as steps_db
from sitezip.db.models import COMPLETE, ERRORED, RUNNING, WorkflowInstance
from sitezip.errors import InstanceNotFound, StepFailed
from sitezip.workflow.policy import DEFAULT_STEP_CONFIG, StepConfig, run_with_policy

logger = logging.getLogger(__name__)


@dataclass
class StepContext:
    """What a step handler can see: its instance and earlier step results.

    ``cancel`` is set when the current attempt has timed out; handlers doing
    long loops check it between units of work.
    """

    instance_id: str
    payload: dict[str, Any]
    results: dict[str, Any] = field(default_factory=dict)
    cancel: threading.Event = field(default_factory=threading.Event)

    def result(self, step_name: str) -> Any:
        return self.results[step_name]


@dataclass(frozen=True)
class Step:
    name: str
    handler: Callable[[StepContext], Any]
    config: StepConfig = DEFAULT_STEP_CONFIG


class WorkflowEngine:
    """Create, run, resume and inspect durable workflow instances.

    Args:
        steps: The ordered step list every instance runs.
        validate: Called on the raw payload by :meth:`create`; returns the
            payload to store or raises :class:`~sitezip.errors.ValidationError`.
        db_path: SQLite file holding instances and the step log.
        max_workers: Background run concurrency.  ``0`` disables the pool;
            instances are then only run by explicit :meth:`run` calls.
        sleep: Pause used between retries, injectable for tests.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        validate: Callable[[Any], dict[str, Any]],
        db_path: Optional[Path] = None,
        max_workers: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        names = [s.name for s in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate step names: {names}")
        self.steps = tuple(steps)
        self.validate = validate
        self.db_path = db_path
        self.sleep = sleep
        self._executor = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="workflow")
            if max_workers > 0
            else None
        )
        self._active: set[str] = set()
        self._lock = threading.Lock()

        conn = get_connection(self.db_path)
        try:
            init_db(conn)
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------
    def _connect(self) -> sqlite3.Connection:
        return get_connection(self.db_path)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create(self, payload: Any) -> WorkflowInstance:
        """Validate *payload*, persist a ``queued`` instance and schedule it.

        Raises:
            ValidationError: Before anything is stored.
        """
        params = self.validate(payload)
        conn = self._connect()
        try:
            instance = instances_db.create_instance(conn, params)
        finally:
            conn.close()
        logger.info("Created workflow instance %s", instance.id)
        self.submit(instance.id)
        return instance

    def status(self, instance_id: str) -> WorkflowInstance:
        """Return the instance.

        Raises:
            InstanceNotFound: If no such instance exists.
        """
        conn = self._connect()
        try:
            instance = instances_db.get_instance(conn, instance_id)
        finally:
            conn.close()
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    def committed_steps(self, instance_id: str) -> list[str]:
        """Names of the steps already committed for an instance."""
        conn = self._connect()
        try:
            return [r.step_name for r in steps_db.list_steps(conn, instance_id)]
        finally:
            conn.close()

    def submit(self, instance_id: str) -> Optional[Future]:
        """Run the instance in the background unless it is already running here."""
        if self._executor is None:
            return None
        with self._lock:
            if instance_id in self._active:
                return None
            self._active.add(instance_id)
        return self._executor.submit(self._run_background, instance_id)

    def resume_incomplete(self) -> list[str]:
        """Schedule every ``queued``/``running`` instance; returns their ids."""
        conn = self._connect()
        try:
            pending = [i.id for i in instances_db.list_incomplete(conn)]
        finally:
            conn.close()
        for instance_id in pending:
            logger.info("Resuming workflow instance %s", instance_id)
            self.submit(instance_id)
        return pending

    def run(self, instance_id: str) -> WorkflowInstance:
        """Drive an instance to a terminal status in the calling thread.

        Terminal instances are returned unchanged.
        """
        conn = self._connect()
        try:
            instance = instances_db.get_instance(conn, instance_id)
            if instance is None:
                raise InstanceNotFound(instance_id)
            if instance.is_terminal:
                return instance
            return self._execute(conn, instance)
        finally:
            conn.close()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the pool; instances not yet started stay ``queued`` for a later resume."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _run_background(self, instance_id: str) -> None:
        try:
            self.run(instance_id)
        except Exception:  # noqa: BLE001
            logger.exception("Workflow instance %s crashed", instance_id)
        finally:
            with self._lock:
                self._active.discard(instance_id)

    def _execute(self, conn: sqlite3.Connection, instance: WorkflowInstance) -> WorkflowInstance:
        ctx = StepContext(instance_id=instance.id, payload=dict(instance.payload))
        instances_db.update_instance(conn, instance.id, status=RUNNING)

        committed = {
            r.step_name: r.result for r in steps_db.list_steps(conn, instance.id)
        }

        for step in self.steps:
            if step.name in committed:
                logger.debug("%s: %s already committed, skipping", instance.id, step.name)
                ctx.results[step.name] = committed[step.name]
                continue

            instances_db.update_instance(conn, instance.id, current_step=step.name)
            logger.info("%s: running %s", instance.id, step.name)
            try:
                result, attempts = run_with_policy(
                    lambda cancel: step.handler(replace(ctx, cancel=cancel)),
                    step.config,
                    sleep=self.sleep,
                    name=f"{instance.id}: {step.name}",
                )
            except Exception as exc:  # noqa: BLE001
                failure = StepFailed(step.name, exc)
                logger.error("%s: %s", instance.id, failure)
                return instances_db.update_instance(
                    conn, instance.id, status=ERRORED, error=str(failure)
                )

            steps_db.commit_step(conn, instance.id, step.name, result, attempts=attempts)
            ctx.results[step.name] = result
            logger.info("%s: committed %s after %d attempt(s)", instance.id, step.name, attempts)

        output = ctx.results[self.steps[-1].name] if self.steps else None
        logger.info("%s: complete", instance.id)
        return instances_db.update_instance(
            conn, instance.id, status=COMPLETE, output=output, current_step=None
        )
