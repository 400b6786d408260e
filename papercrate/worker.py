"""Background worker for processing jobs."""

import argparse
import logging
import signal
import threading
import time
from typing import Optional

from papercrate.config import Settings
from papercrate.context import WorkerContext, build_context
from papercrate.database import wait_for_database
from papercrate.errors import JobQueueError
from papercrate.handlers import Failed, HandlerRegistry, Outcome, Retry, Success, default_handlers
from papercrate.models.job import Job
from papercrate.services.job_queue import (
    mark_job_failed,
    mark_job_succeeded,
    reclaim_stale_jobs,
    reserve_job,
    retry_job_after,
)

logger = logging.getLogger(__name__)


class Worker:
    """Single-threaded polling loop over the jobs table.

    Many worker processes may run side by side; they coordinate only
    through the atomic reservation in the job queue.
    """

    def __init__(
        self,
        ctx: WorkerContext,
        registry: HandlerRegistry,
        poll_interval: Optional[float] = None,
    ):
        """Initialize worker."""
        settings = ctx.settings
        self.ctx = ctx
        self.registry = registry
        self.poll_interval = settings.WORKER_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_attempts = settings.WORKER_MAX_ATTEMPTS
        self.lease_timeout = settings.WORKER_LEASE_TIMEOUT
        self.reclaim_interval = settings.WORKER_RECLAIM_INTERVAL
        self._last_reclaim: Optional[float] = None

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Main worker loop.

        Args:
            stop_event: Event that stops the loop; the in-flight job is
                always finished before returning
        """
        stop_event = stop_event or threading.Event()
        logger.info(f"Worker started for job types: {', '.join(self.registry.job_types())}")

        while not stop_event.is_set():
            try:
                self.maybe_reclaim()
                busy = self.tick()
            except JobQueueError as e:
                logger.error(f"Worker tick failed: {e}")
                busy = False
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)
                busy = False

            # Drain greedily while work exists
            if not busy:
                stop_event.wait(self.poll_interval)

        logger.info("Worker stopped")

    def tick(self) -> bool:
        """
        Reserve and process at most one job.

        Returns:
            True if a job was processed, False if the queue had nothing eligible

        Raises:
            JobQueueError: If the store is unreachable
        """
        job_types = self.registry.job_types()
        if not job_types:
            return False

        with self.ctx.session() as db:
            job = reserve_job(db, job_types)

        if job is None:
            return False

        logger.info(f"Processing job {job.id} ({job.job_type}, attempt {job.attempts})")
        outcome = self.registry.dispatch(self.ctx, job)
        self.apply_outcome(job, outcome)
        return True

    def run_until_idle(self, max_jobs: Optional[int] = None) -> int:
        """Process jobs until nothing is eligible; returns the number processed."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if not self.tick():
                break
            processed += 1
        return processed

    def apply_outcome(self, job: Job, outcome: Outcome) -> None:
        """Record a handler outcome on the job row."""
        if isinstance(outcome, Retry) and self.max_attempts > 0 and job.attempts >= self.max_attempts:
            outcome = Failed(error=f"giving up after {job.attempts} attempts: {outcome.error}")

        with self.ctx.session() as db:
            if isinstance(outcome, Success):
                applied = mark_job_succeeded(db, job.id, expected_attempts=job.attempts)
                if applied:
                    logger.info(f"Job {job.id} ({job.job_type}) completed successfully")
            elif isinstance(outcome, Retry):
                applied = retry_job_after(
                    db, job.id, outcome.delay, outcome.error, expected_attempts=job.attempts
                )
                if applied:
                    logger.warning(
                        f"Job {job.id} ({job.job_type}) will retry in {outcome.delay:.0f}s: {outcome.error}"
                    )
            else:
                applied = mark_job_failed(db, job.id, outcome.error, expected_attempts=job.attempts)
                if applied:
                    logger.error(f"Job {job.id} ({job.job_type}) failed: {outcome.error}")

        if not applied:
            logger.warning(f"Job {job.id} lease was lost before its outcome could be recorded")

    def maybe_reclaim(self) -> int:
        """Requeue jobs abandoned by crashed workers, at most once per interval."""
        now = time.monotonic()
        if self._last_reclaim is not None and now - self._last_reclaim < self.reclaim_interval:
            return 0
        self._last_reclaim = now

        with self.ctx.session() as db:
            return reclaim_stale_jobs(db, self.lease_timeout, self.max_attempts)


def worker_loop(ctx: WorkerContext, stop_event: Optional[threading.Event] = None) -> None:
    """Run worker loop (for use as background thread).

    Args:
        ctx: Worker context
        stop_event: Optional threading.Event to signal worker to stop
    """
    worker = Worker(ctx, HandlerRegistry(default_handlers()))
    worker.run(stop_event=stop_event)


def main() -> None:
    """Entry point for standalone worker."""
    parser = argparse.ArgumentParser(description="Papercrate job worker")
    parser.add_argument("--poll-interval", type=float, default=None, help="Seconds to sleep when idle")
    args = parser.parse_args()

    settings = Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    ctx = build_context(settings)
    logger.info("Worker starting - waiting for database to be ready...")
    wait_for_database(ctx.session_factory)

    stop_event = threading.Event()

    def _signal_handler(signum, frame):
        logger.info(f"Worker received {signal.Signals(signum).name}; finishing current job")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    worker = Worker(ctx, HandlerRegistry(default_handlers()), poll_interval=args.poll_interval)
    try:
        worker.run(stop_event=stop_event)
    finally:
        ctx.close()


if __name__ == "__main__":
    main()
