"""Job model for the worker queue."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, Text, Uuid

from papercrate.database import Base, JSONType, utcnow

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = (STATUS_SUCCEEDED, STATUS_FAILED)


class Job(Base):
    """Job represents one unit of asynchronous work for the worker."""

    __tablename__ = "jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(Text, nullable=False)
    payload = Column(JSONType, nullable=False, default=dict)
    status = Column(Text, nullable=False, default=STATUS_QUEUED)
    attempts = Column(Integer, nullable=False, default=0)
    run_after = Column(DateTime, nullable=False, default=utcnow)
    last_error = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'succeeded', 'failed')",
            name="jobs_status_check",
        ),
        Index("idx_jobs_status_run_after", "status", "run_after"),
        Index("idx_jobs_job_type", "job_type"),
    )

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.job_type} {self.status} attempts={self.attempts}>"
