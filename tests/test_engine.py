"""Tests for the durable step engine and its retry policy.

Handlers here are plain counters so the tests can assert exactly how often
each step body ran.  Retry pauses go through an injected ``sleep`` that
only records the requested delays.
"""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from sitezip.errors import InstanceNotFound, StepTimeout, ValidationError
from sitezip.workflow.engine import Step, StepContext, WorkflowEngine
from sitezip.workflow.policy import StepConfig, run_with_policy

NO_RETRY = StepConfig(retries=0, delay=0, timeout=None)


class _Crash(BaseException):
    """Stands in for the process dying mid-step."""


class _Counter:
    def __init__(self, result=None, fail_times: int = 0, exc: Exception | None = None) -> None:
        self.calls = 0
        self.result = result
        self.fail_times = fail_times
        self.exc = exc or RuntimeError("boom")

    def __call__(self, ctx: StepContext):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise self.exc
        return self.result


def _validate(payload):
    if not isinstance(payload, dict) or "value" not in payload:
        raise ValidationError("value is required")
    return payload


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def make_engine(tmp_path: Path, sleeps: list[float]):
    engines: list[WorkflowEngine] = []

    def _make(steps, max_workers: int = 0) -> WorkflowEngine:
        engine = WorkflowEngine(
            steps,
            validate=_validate,
            db_path=tmp_path / "workflows.db",
            max_workers=max_workers,
            sleep=sleeps.append,
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.shutdown()


# ---------------------------------------------------------------------------
# StepConfig / run_with_policy
# ---------------------------------------------------------------------------

class TestStepConfig:
    def test_exponential_delays(self) -> None:
        config = StepConfig(retries=4, delay=1.0, backoff="exponential")
        assert [config.delay_after(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_linear_delays(self) -> None:
        config = StepConfig(retries=3, delay=2.0, backoff="linear")
        assert [config.delay_after(n) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]

    def test_constant_delays(self) -> None:
        config = StepConfig(retries=3, delay=5.0, backoff="constant")
        assert [config.delay_after(n) for n in (1, 2, 3)] == [5.0, 5.0, 5.0]

    def test_rejects_unknown_backoff(self) -> None:
        with pytest.raises(ValueError):
            StepConfig(backoff="random")

    def test_rejects_negative_retries(self) -> None:
        with pytest.raises(ValueError):
            StepConfig(retries=-1)


class TestRunWithPolicy:
    def test_returns_result_and_attempts(self) -> None:
        calls = iter([RuntimeError("a"), RuntimeError("b"), "ok"])

        def _func(cancel):
            item = next(calls)
            if isinstance(item, Exception):
                raise item
            return item

        pauses: list[float] = []
        result, attempts = run_with_policy(
            _func, StepConfig(retries=3, delay=1.0, timeout=None), sleep=pauses.append
        )
        assert (result, attempts) == ("ok", 3)
        assert pauses == [1.0, 2.0]

    def test_raises_last_error_when_exhausted(self) -> None:
        with pytest.raises(RuntimeError, match="boom"):
            run_with_policy(
                _Counter(fail_times=10), StepConfig(retries=2, delay=0, timeout=None),
                sleep=lambda s: None,
            )

    def test_timed_out_attempt_stops_before_retry(self) -> None:
        lock = threading.Lock()
        active = 0
        peaks: list[int] = []
        cancelled: list[bool] = []

        def _slow(cancel: threading.Event) -> str:
            nonlocal active
            with lock:
                active += 1
                peaks.append(active)
            try:
                cancelled.append(cancel.wait(0.4))
            finally:
                with lock:
                    active -= 1
            return "late"

        with pytest.raises(StepTimeout):
            run_with_policy(
                _slow, StepConfig(retries=2, delay=0, timeout=0.1), sleep=lambda s: None
            )

        assert peaks == [1, 1, 1]
        assert cancelled == [True, True, True]

    def test_attempt_without_timeout_is_never_cancelled(self) -> None:
        seen: list[threading.Event] = []

        def _func(cancel: threading.Event) -> str:
            seen.append(cancel)
            return "ok"

        run_with_policy(_func, StepConfig(retries=0, timeout=None))
        assert not seen[0].is_set()


# ---------------------------------------------------------------------------
# WorkflowEngine
# ---------------------------------------------------------------------------

class TestCreateAndStatus:
    def test_invalid_payload_creates_nothing(self, make_engine) -> None:
        engine = make_engine([Step("only", _Counter(1), NO_RETRY)])
        with pytest.raises(ValidationError):
            engine.create({"other": 1})
        with pytest.raises(ValidationError):
            engine.create("not an object")

        from sitezip.db import get_connection
        from sitezip.db.instances import list_instances

        conn = get_connection(engine.db_path)
        try:
            assert list_instances(conn) == []
        finally:
            conn.close()

    def test_create_queues_instance(self, make_engine) -> None:
        engine = make_engine([Step("only", _Counter(1), NO_RETRY)])
        instance = engine.create({"value": 1})
        assert instance.status == "queued"
        assert engine.status(instance.id).payload == {"value": 1}

    def test_unknown_id(self, make_engine) -> None:
        engine = make_engine([Step("only", _Counter(1), NO_RETRY)])
        with pytest.raises(InstanceNotFound):
            engine.status("never-created")
        with pytest.raises(InstanceNotFound):
            engine.run("never-created")

    def test_duplicate_step_names_rejected(self, make_engine) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            make_engine([Step("a", _Counter()), Step("a", _Counter())])

    def test_schema_loaded_once_per_engine(self, make_engine, monkeypatch) -> None:
        engine = make_engine([Step("only", _Counter(1), NO_RETRY)])
        loads: list[object] = []
        monkeypatch.setattr("sitezip.workflow.engine.init_db", loads.append)

        instance = engine.create({"value": 1})
        engine.status(instance.id)
        engine.run(instance.id)
        engine.committed_steps(instance.id)

        assert loads == []


class TestRun:
    def test_runs_steps_in_order_and_passes_results(self, make_engine) -> None:
        order: list[str] = []

        def first(ctx: StepContext):
            order.append("first")
            return ctx.payload["value"] + 1

        def second(ctx: StepContext):
            order.append("second")
            return {"total": ctx.result("first") * 10}

        engine = make_engine([Step("first", first, NO_RETRY), Step("second", second, NO_RETRY)])
        instance = engine.create({"value": 1})
        final = engine.run(instance.id)

        assert order == ["first", "second"]
        assert final.status == "complete"
        assert final.output == {"total": 20}
        assert final.error is None
        assert engine.committed_steps(instance.id) == ["first", "second"]

    def test_failure_marks_errored_with_step_prefix(self, make_engine) -> None:
        later = _Counter("never")
        engine = make_engine([
            Step("Load", _Counter(fail_times=1, exc=RuntimeError("disk on fire")), NO_RETRY),
            Step("Later", later, NO_RETRY),
        ])
        instance = engine.create({"value": 1})
        final = engine.run(instance.id)

        assert final.status == "errored"
        assert final.error == "Load failed: disk on fire"
        assert final.output is None
        assert later.calls == 0

    def test_retries_then_commits_attempt_count(self, make_engine, sleeps) -> None:
        flaky = _Counter("ok", fail_times=2)
        engine = make_engine([
            Step("Flaky", flaky, StepConfig(retries=3, delay=1.0, backoff="exponential", timeout=None)),
        ])
        instance = engine.create({"value": 1})
        final = engine.run(instance.id)

        assert final.status == "complete"
        assert flaky.calls == 3
        assert sleeps == [1.0, 2.0]

        from sitezip.db import get_connection
        from sitezip.db.steps import get_step

        conn = get_connection(engine.db_path)
        try:
            assert get_step(conn, instance.id, "Flaky").attempts == 3
        finally:
            conn.close()

    def test_retry_budget_exhausted(self, make_engine, sleeps) -> None:
        flaky = _Counter("ok", fail_times=5)
        engine = make_engine([
            Step("Flaky", flaky, StepConfig(retries=2, delay=1.0, backoff="constant", timeout=None)),
        ])
        final = engine.run(engine.create({"value": 1}).id)

        assert final.status == "errored"
        assert final.error == "Flaky failed: boom"
        assert flaky.calls == 3
        assert sleeps == [1.0, 1.0]

    def test_validation_error_is_not_retried(self, make_engine, sleeps) -> None:
        check = _Counter(fail_times=10, exc=ValidationError("bad url"))
        engine = make_engine([Step("Check", check, StepConfig(retries=5, delay=1.0))])
        final = engine.run(engine.create({"value": 1}).id)

        assert final.error == "Check failed: bad url"
        assert check.calls == 1
        assert sleeps == []

    def test_timeout_fails_attempt(self, make_engine) -> None:
        def slow(ctx: StepContext):
            ctx.cancel.wait(5)
            return "late"

        engine = make_engine([Step("Slow", slow, StepConfig(retries=0, delay=0, timeout=0.05))])
        final = engine.run(engine.create({"value": 1}).id)

        assert final.status == "errored"
        assert final.error == "Slow failed: timed out after 0.05s"

    def test_terminal_instance_is_not_rerun(self, make_engine) -> None:
        step = _Counter("done")
        engine = make_engine([Step("Only", step, NO_RETRY)])
        instance = engine.create({"value": 1})
        engine.run(instance.id)
        again = engine.run(instance.id)

        assert again.status == "complete"
        assert step.calls == 1


class TestDurability:
    def test_resume_skips_committed_steps(self, make_engine) -> None:
        first = _Counter("links")
        second = _Counter(fail_times=1, exc=_Crash())
        third = _Counter("zip")

        engine = make_engine([
            Step("First", first, NO_RETRY),
            Step("Second", second, NO_RETRY),
            Step("Third", third, NO_RETRY),
        ])
        instance = engine.create({"value": 1})

        with pytest.raises(_Crash):
            engine.run(instance.id)

        interrupted = engine.status(instance.id)
        assert interrupted.status == "running"
        assert interrupted.current_step == "Second"
        assert engine.committed_steps(instance.id) == ["First"]

        # A fresh engine over the same database, as after a restart.
        second.result = "pages"
        restarted = make_engine([
            Step("First", first, NO_RETRY),
            Step("Second", second, NO_RETRY),
            Step("Third", third, NO_RETRY),
        ])
        final = restarted.run(instance.id)

        assert final.status == "complete"
        assert final.output == "zip"
        assert first.calls == 1
        assert second.calls == 2
        assert third.calls == 1

    def test_resumed_step_sees_stored_results(self, make_engine) -> None:
        seen: list[object] = []

        def consumer(ctx: StepContext):
            seen.append(ctx.result("Producer"))
            return "ok"

        producer = _Counter({"links": ["https://a", "https://b"]})
        crash_once = _Counter(fail_times=1, exc=_Crash())

        engine = make_engine([
            Step("Producer", producer, NO_RETRY),
            Step("Crashy", crash_once, NO_RETRY),
            Step("Consumer", consumer, NO_RETRY),
        ])
        instance = engine.create({"value": 1})
        with pytest.raises(_Crash):
            engine.run(instance.id)
        engine.run(instance.id)

        assert producer.calls == 1
        assert seen == [{"links": ["https://a", "https://b"]}]

    def test_resume_incomplete_lists_unfinished(self, make_engine) -> None:
        engine = make_engine([Step("Only", _Counter("x"), NO_RETRY)])
        pending = engine.create({"value": 1})
        done = engine.create({"value": 2})
        engine.run(done.id)

        assert engine.resume_incomplete() == [pending.id]

    def test_background_execution(self, make_engine) -> None:
        started = threading.Event()

        def step(ctx: StepContext):
            started.set()
            return "result"

        engine = make_engine([Step("Only", step, NO_RETRY)], max_workers=1)
        instance = engine.create({"value": 1})
        assert started.wait(5)
        engine.shutdown(wait=True)

        final = engine.status(instance.id)
        assert final.status == "complete"
        assert final.output == "result"

    def test_shutdown_leaves_unstarted_instances_queued(self, make_engine) -> None:
        started = threading.Event()
        release = threading.Event()

        def blocking(ctx: StepContext):
            started.set()
            release.wait(5)
            return "done"

        engine = make_engine([Step("Only", blocking, NO_RETRY)], max_workers=1)
        first = engine.create({"value": 1})
        second = engine.create({"value": 2})
        assert started.wait(5)

        engine.shutdown(wait=False)
        release.set()
        engine.shutdown(wait=True)

        assert engine.status(first.id).status == "complete"
        assert engine.status(second.id).status == "queued"
