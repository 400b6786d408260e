"""Job inspection routes for operators."""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from papercrate.database import get_db
from papercrate.schemas.job import JobResponse, JobStats
from papercrate.services.job_queue import count_jobs_by_status, get_job, list_jobs

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("", response_model=List[JobResponse])
def list_job_rows(
    status: Optional[str] = None,
    job_type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """List jobs, most recently updated first."""
    return list_jobs(db, status=status, job_type=job_type, limit=limit)


@router.get("/stats", response_model=JobStats)
def job_stats(db: Session = Depends(get_db)):
    """Job counts by status."""
    return JobStats(**count_jobs_by_status(db))


@router.get("/{job_id}", response_model=JobResponse)
def get_job_row(job_id: uuid.UUID, db: Session = Depends(get_db)):
    """Get a single job, including its last error."""
    job = get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
