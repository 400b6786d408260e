"""Durable job queue on top of the jobs table.

Every worker process coordinates exclusively through these functions. On
PostgreSQL a job is claimed with ``SELECT ... FOR UPDATE SKIP LOCKED`` inside
a transaction; other backends fall back to a compare-and-swap ``UPDATE`` that
only succeeds while the row is still queued.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from papercrate.database import utcnow
from papercrate.errors import JobQueueError
from papercrate.models.job import (
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    STATUS_SUCCEEDED,
    TERMINAL_STATUSES,
    Job,
)

logger = logging.getLogger(__name__)

JOB_ANALYZE_DOCUMENT = "analyze-document"
JOB_GENERATE_THUMBNAILS = "generate-thumbnails"
JOB_GENERATE_OCR_TEXT = "generate-ocr-text"
JOB_INDEX_DOCUMENT_TEXT = "index-document-text"

# Bound on compare-and-swap rounds when another worker wins the candidate row
RESERVE_CAS_ATTEMPTS = 5

LEASE_EXPIRED_ERROR = "lease expired; reclaimed from unresponsive worker"


def enqueue_job(
    db: Session,
    job_type: str,
    payload: Dict[str, Any],
    run_after: Optional[datetime] = None,
    commit: bool = True,
) -> Job:
    """
    Insert a new queued job.

    Args:
        db: Database session
        job_type: Handler tag for the job
        payload: JSON-serialisable handler payload
        run_after: Earliest time the job may be reserved (defaults to now)
        commit: Commit immediately; pass False to join a larger transaction

    Returns:
        The persisted Job

    Raises:
        JobQueueError: If the store is unavailable
    """
    now = utcnow()
    job = Job(
        id=uuid.uuid4(),
        job_type=job_type,
        payload=payload,
        status=STATUS_QUEUED,
        attempts=0,
        run_after=run_after or now,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(job)
        if commit:
            db.commit()
        else:
            db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        raise JobQueueError(f"failed to enqueue {job_type} job: {e}") from e

    logger.debug(f"Enqueued job {job.id} ({job_type})")
    return job


def reserve_job(db: Session, job_types: Iterable[str]) -> Optional[Job]:
    """
    Claim the oldest eligible job of the given types.

    The returned job is already committed as ``processing`` with its
    attempts counter incremented. Two concurrent callers never receive the
    same row.

    Args:
        db: Database session
        job_types: Job types the caller can handle

    Returns:
        The reserved Job, or None if nothing is eligible

    Raises:
        JobQueueError: If the store is unavailable
    """
    job_types = list(job_types)
    if not job_types:
        return None

    try:
        if db.get_bind().dialect.name == "postgresql":
            return _reserve_skip_locked(db, job_types)
        return _reserve_compare_and_swap(db, job_types)
    except SQLAlchemyError as e:
        db.rollback()
        raise JobQueueError(f"failed to reserve job: {e}") from e


def _eligible(job_types: List[str], now: datetime):
    return (
        select(Job)
        .where(
            Job.status == STATUS_QUEUED,
            Job.run_after <= now,
            Job.job_type.in_(job_types),
        )
        .order_by(Job.run_after.asc())
        .limit(1)
    )


def _reserve_skip_locked(db: Session, job_types: List[str]) -> Optional[Job]:
    now = utcnow()
    job = db.execute(
        _eligible(job_types, now).with_for_update(skip_locked=True)
    ).scalar_one_or_none()

    if job is None:
        db.rollback()
        return None

    job.status = STATUS_PROCESSING
    job.attempts = job.attempts + 1
    job.updated_at = now
    db.commit()
    return job


def _reserve_compare_and_swap(db: Session, job_types: List[str]) -> Optional[Job]:
    for _ in range(RESERVE_CAS_ATTEMPTS):
        now = utcnow()
        candidate_id = db.execute(
            _eligible(job_types, now).with_only_columns(Job.id)
        ).scalar_one_or_none()

        if candidate_id is None:
            db.rollback()
            return None

        result = db.execute(
            update(Job)
            .where(Job.id == candidate_id, Job.status == STATUS_QUEUED)
            .values(
                status=STATUS_PROCESSING,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            job = db.get(Job, candidate_id, populate_existing=True)
            db.commit()
            return job

        # Another worker claimed the candidate first
        db.rollback()

    logger.debug("Reservation lost every compare-and-swap round")
    return None


def _guarded_update(
    db: Session,
    job_id: uuid.UUID,
    values: Dict[str, Any],
    excluded_statuses: Iterable[str],
    expected_attempts: Optional[int],
) -> bool:
    conditions = [Job.id == job_id, Job.status.not_in(list(excluded_statuses))]
    if expected_attempts is not None:
        # Lease token: only the holder of this reservation may settle it
        conditions.append(Job.status == STATUS_PROCESSING)
        conditions.append(Job.attempts == expected_attempts)

    try:
        result = db.execute(
            update(Job)
            .where(*conditions)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise JobQueueError(f"failed to update job {job_id}: {e}") from e

    return result.rowcount > 0


def mark_job_succeeded(
    db: Session, job_id: uuid.UUID, expected_attempts: Optional[int] = None
) -> bool:
    """Mark a job succeeded and clear its error; no-op on finished jobs."""
    return _guarded_update(
        db,
        job_id,
        {"status": STATUS_SUCCEEDED, "last_error": None},
        excluded_statuses=TERMINAL_STATUSES,
        expected_attempts=expected_attempts,
    )


def mark_job_failed(
    db: Session,
    job_id: uuid.UUID,
    error_message: str,
    expected_attempts: Optional[int] = None,
) -> bool:
    """Move a job to the terminal failed state."""
    return _guarded_update(
        db,
        job_id,
        {"status": STATUS_FAILED, "last_error": error_message},
        excluded_statuses=TERMINAL_STATUSES,
        expected_attempts=expected_attempts,
    )


def retry_job_after(
    db: Session,
    job_id: uuid.UUID,
    delay: float,
    error_message: str,
    expected_attempts: Optional[int] = None,
) -> bool:
    """Requeue a job so it becomes eligible again after ``delay`` seconds."""
    return _guarded_update(
        db,
        job_id,
        {
            "status": STATUS_QUEUED,
            "run_after": utcnow() + timedelta(seconds=max(delay, 0)),
            "last_error": error_message,
        },
        excluded_statuses=TERMINAL_STATUSES,
        expected_attempts=expected_attempts,
    )


def reclaim_stale_jobs(db: Session, lease_timeout: float, max_attempts: int = 0) -> int:
    """
    Return jobs abandoned in ``processing`` to the queue.

    A job whose ``updated_at`` is older than the lease timeout is assumed to
    belong to a crashed worker. It is requeued for immediate pickup, or
    failed when it has already used up ``max_attempts`` (0 means no ceiling).

    Args:
        db: Database session
        lease_timeout: Seconds a reservation may stay in processing
        max_attempts: Attempts ceiling

    Returns:
        Number of jobs reclaimed or failed
    """
    now = utcnow()
    cutoff = now - timedelta(seconds=lease_timeout)
    stale = [
        Job.status == STATUS_PROCESSING,
        Job.updated_at < cutoff,
    ]

    try:
        failed = 0
        if max_attempts > 0:
            failed = db.execute(
                update(Job)
                .where(*stale, Job.attempts >= max_attempts)
                .values(
                    status=STATUS_FAILED,
                    last_error=f"{LEASE_EXPIRED_ERROR} after {max_attempts} attempts",
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        requeued = db.execute(
            update(Job)
            .where(*stale)
            .values(
                status=STATUS_QUEUED,
                run_after=now,
                last_error=LEASE_EXPIRED_ERROR,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise JobQueueError(f"failed to reclaim stale jobs: {e}") from e

    if failed or requeued:
        logger.warning(f"Reclaimed {requeued} stale jobs, failed {failed} over the attempts ceiling")
    return failed + requeued


def get_job(db: Session, job_id: uuid.UUID) -> Optional[Job]:
    """Load a single job by id."""
    return db.get(Job, job_id)


def list_jobs(
    db: Session,
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    limit: int = 100,
) -> List[Job]:
    """List jobs, most recently updated first."""
    query = select(Job)
    if status:
        query = query.where(Job.status == status)
    if job_type:
        query = query.where(Job.job_type == job_type)
    query = query.order_by(Job.updated_at.desc()).limit(limit)
    return list(db.execute(query).scalars())


def count_jobs_by_status(db: Session) -> Dict[str, int]:
    """Count jobs per status, including statuses with no rows."""
    counts = {
        STATUS_QUEUED: 0,
        STATUS_PROCESSING: 0,
        STATUS_SUCCEEDED: 0,
        STATUS_FAILED: 0,
    }
    rows = db.execute(select(Job.status, func.count(Job.id)).group_by(Job.status))
    for status, count in rows:
        counts[status] = count
    return counts
