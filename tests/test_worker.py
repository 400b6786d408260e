"""Tests for the worker loop and handler registry."""

import threading
import time
from datetime import timedelta

import pytest
from sqlalchemy import update

from papercrate.database import utcnow
from papercrate.errors import JobQueueError
from papercrate.handlers import (
    NO_HANDLER_ERROR,
    Failed,
    HandlerRegistry,
    JobHandler,
    Retry,
    Success,
    default_handlers,
)
from papercrate.handlers.base import FAULT_RETRY_DELAY, TRANSIENT_RETRY_DELAY
from papercrate.models.job import Job
from papercrate.services.job_queue import (
    JOB_ANALYZE_DOCUMENT,
    JOB_GENERATE_OCR_TEXT,
    JOB_GENERATE_THUMBNAILS,
    JOB_INDEX_DOCUMENT_TEXT,
    reserve_job,
    retry_job_after,
)
from papercrate.worker import Worker

STUB_JOB_TYPE = "stub-job"


class ScriptedHandler(JobHandler):
    """Returns a fixed sequence of outcomes, repeating the last one."""

    job_type = STUB_JOB_TYPE

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def process(self, ctx, job, payload):
        self.calls += 1
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


class CrashingHandler(JobHandler):
    job_type = STUB_JOB_TYPE

    def handle(self, ctx, job):
        raise RuntimeError("handler exploded")


class CrashingStepHandler(JobHandler):
    job_type = STUB_JOB_TYPE

    def process(self, ctx, job, payload):
        self.offload(ctx, job, "divide", lambda: 1 / 0)
        return Success()


def _reload(session_factory, job_id):
    with session_factory() as session:
        return session.get(Job, job_id)


def test_registry_rejects_duplicate_job_types():
    """Test two handlers for the same job type are refused."""
    with pytest.raises(ValueError):
        HandlerRegistry([ScriptedHandler(Success()), ScriptedHandler(Success())])


def test_default_handlers_cover_pipeline():
    """Test the default registry serves all four stages."""
    registry = HandlerRegistry(default_handlers())

    assert registry.job_types() == sorted(
        [JOB_ANALYZE_DOCUMENT, JOB_GENERATE_THUMBNAILS, JOB_GENERATE_OCR_TEXT, JOB_INDEX_DOCUMENT_TEXT]
    )


def test_unregistered_job_type_fails_without_retry(ctx, enqueue, session_factory):
    """Test a job with no handler is failed permanently."""
    job = enqueue("unknown-job", {})
    with session_factory() as session:
        reserved = reserve_job(session, ["unknown-job"])

    worker = Worker(ctx, HandlerRegistry([ScriptedHandler(Success())]))
    outcome = worker.registry.dispatch(ctx, reserved)
    worker.apply_outcome(reserved, outcome)

    assert outcome == Failed(error=NO_HANDLER_ERROR)
    row = _reload(session_factory, job.id)
    assert row.status == "failed"
    assert row.last_error == NO_HANDLER_ERROR


def test_retry_then_success(ctx, enqueue, session_factory):
    """Test a retried job is processed again and ends succeeded."""
    handler = ScriptedHandler(Retry(delay=0, error="temporary outage"), Success())
    job = enqueue(STUB_JOB_TYPE, {})

    worker = Worker(ctx, HandlerRegistry([handler]), poll_interval=0)
    processed = worker.run_until_idle()

    assert processed == 2
    assert handler.calls == 2
    row = _reload(session_factory, job.id)
    assert row.status == "succeeded"
    assert row.attempts == 2
    assert row.last_error is None


def test_retry_sets_delay_and_error(ctx, enqueue, session_factory):
    """Test a retry outcome requeues the job in the future."""
    job = enqueue(STUB_JOB_TYPE, {})

    worker = Worker(ctx, HandlerRegistry([ScriptedHandler(Retry(delay=30, error="search down"))]))
    assert worker.run_until_idle() == 1

    row = _reload(session_factory, job.id)
    assert row.status == "queued"
    assert row.last_error == "search down"
    assert row.run_after > utcnow() + timedelta(seconds=20)


def test_attempts_ceiling_turns_retry_into_failure(ctx, enqueue, session_factory):
    """Test a job that keeps retrying is failed at the ceiling."""
    job = enqueue(STUB_JOB_TYPE, {})

    worker = Worker(ctx, HandlerRegistry([ScriptedHandler(Retry(delay=0, error="still down"))]))
    worker.max_attempts = 3
    processed = worker.run_until_idle()

    assert processed == 3
    row = _reload(session_factory, job.id)
    assert row.status == "failed"
    assert row.attempts == 3
    assert row.last_error == "giving up after 3 attempts: still down"


def test_handler_crash_becomes_worker_fault_retry(ctx, enqueue, session_factory):
    """Test an exception escaping a handler is retried, not lost."""
    job = enqueue(STUB_JOB_TYPE, {})

    worker = Worker(ctx, HandlerRegistry([CrashingHandler()]))
    worker.run_until_idle()

    row = _reload(session_factory, job.id)
    assert row.status == "queued"
    assert row.last_error == "worker fault: handler exploded"
    assert row.run_after > utcnow() + timedelta(seconds=FAULT_RETRY_DELAY - 10)


def test_offloaded_step_crash_becomes_worker_fault_retry(ctx, enqueue):
    """Test an unexpected exception in an offloaded step is reported as a fault."""
    job = enqueue(STUB_JOB_TYPE, {})

    outcome = CrashingStepHandler().handle(ctx, job)

    assert isinstance(outcome, Retry)
    assert outcome.delay == FAULT_RETRY_DELAY
    assert outcome.error.startswith("worker fault during divide:")


def test_lost_lease_outcome_is_dropped(ctx, enqueue, session_factory):
    """Test an outcome is not applied after the job was reclaimed and re-reserved."""
    job = enqueue(STUB_JOB_TYPE, {})
    with session_factory() as session:
        stale = reserve_job(session, [STUB_JOB_TYPE])
    with session_factory() as session:
        retry_job_after(session, job.id, 0, "reclaimed")
        reserve_job(session, [STUB_JOB_TYPE])

    worker = Worker(ctx, HandlerRegistry([ScriptedHandler(Success())]))
    worker.apply_outcome(stale, Success())

    row = _reload(session_factory, job.id)
    assert row.status == "processing"
    assert row.attempts == 2


def test_reclaim_runs_at_most_once_per_interval(ctx, enqueue, session_factory):
    """Test the loop reclaims stale jobs and then waits for the interval."""
    job = enqueue(STUB_JOB_TYPE, {})
    with session_factory() as session:
        reserve_job(session, [STUB_JOB_TYPE])
        session.execute(
            update(Job).where(Job.id == job.id).values(updated_at=utcnow() - timedelta(hours=2))
        )
        session.commit()

    worker = Worker(ctx, HandlerRegistry([ScriptedHandler(Success())]))

    assert worker.maybe_reclaim() == 1
    assert worker.maybe_reclaim() == 0
    assert _reload(session_factory, job.id).status == "queued"


def test_run_stops_on_event(ctx, enqueue, session_factory):
    """Test the loop drains work and exits when signalled."""
    jobs = [enqueue(STUB_JOB_TYPE, {}) for _ in range(3)]
    worker = Worker(ctx, HandlerRegistry([ScriptedHandler(Success())]), poll_interval=0.01)
    stop_event = threading.Event()

    thread = threading.Thread(target=worker.run, args=(stop_event,))
    thread.start()

    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        if all(_reload(session_factory, job.id).status == "succeeded" for job in jobs):
            break
        time.sleep(0.05)

    stop_event.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert all(_reload(session_factory, job.id).status == "succeeded" for job in jobs)


def test_transient_step_failure_retries_after_thirty_seconds(ctx, enqueue):
    """Test storage errors inside a step map to the transient retry delay."""

    class MissingBlobHandler(JobHandler):
        job_type = STUB_JOB_TYPE

        def process(self, ctx, job, payload):
            self.offload(ctx, job, "fetch document", ctx.storage.get_object, "missing-key")
            return Success()

    job = enqueue(STUB_JOB_TYPE, {})
    outcome = MissingBlobHandler().handle(ctx, job)

    assert isinstance(outcome, Retry)
    assert outcome.delay == TRANSIENT_RETRY_DELAY
    assert "missing-key" in outcome.error


def test_run_survives_unreachable_store(ctx, enqueue, session_factory, monkeypatch):
    """Test reservation errors are logged and the loop keeps polling."""
    job = enqueue(STUB_JOB_TYPE, {})
    failures = {"remaining": 2}

    def flaky_reserve(db, job_types):
        if failures["remaining"]:
            failures["remaining"] -= 1
            raise JobQueueError("failed to reserve job: connection refused")
        return reserve_job(db, job_types)

    monkeypatch.setattr("papercrate.worker.reserve_job", flaky_reserve)
    handler = ScriptedHandler(Success())
    worker = Worker(ctx, HandlerRegistry([handler]), poll_interval=0.01)
    stop_event = threading.Event()

    thread = threading.Thread(target=worker.run, args=(stop_event,))
    thread.start()

    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        if _reload(session_factory, job.id).status == "succeeded":
            break
        time.sleep(0.05)

    stop_event.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert failures["remaining"] == 0
    assert handler.calls == 1
    assert _reload(session_factory, job.id).status == "succeeded"
