"""Handler contract and job outcomes."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from papercrate.context import WorkerContext
from papercrate.errors import ContentError, TransientError, WorkerFault
from papercrate.models.job import Job

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_RETRY_DELAY = 30.0
FAULT_RETRY_DELAY = 60.0


@dataclass(frozen=True)
class Success:
    """The job finished."""


@dataclass(frozen=True)
class Retry:
    """Transient failure; run the job again after ``delay`` seconds."""

    delay: float
    error: str


@dataclass(frozen=True)
class Failed:
    """Permanent failure for this job."""

    error: str


Outcome = Union[Success, Retry, Failed]


class StageAborted(Exception):
    """Carries an outcome out of a handler step."""

    def __init__(self, outcome: Outcome):
        super().__init__(getattr(outcome, "error", ""))
        self.outcome = outcome


class JobHandler:
    """Base class for pipeline stages.

    Subclasses set ``job_type`` (and usually ``payload_model``) and implement
    ``process``. Every path through ``handle`` ends in an Outcome.
    """

    job_type: str = ""
    payload_model: Optional[Type[BaseModel]] = None

    def handle(self, ctx: WorkerContext, job: Job) -> Outcome:
        """Validate the payload and run the stage."""
        payload = job.payload or {}
        if self.payload_model is not None:
            try:
                payload = self.payload_model.model_validate(payload)
            except ValidationError as e:
                return Failed(error=f"invalid {self.job_type} payload: {e}")

        try:
            return self.process(ctx, job, payload)
        except StageAborted as aborted:
            return aborted.outcome

    def process(self, ctx: WorkerContext, job: Job, payload: Any) -> Outcome:
        """Run the stage logic (to be implemented by subclasses)."""
        raise NotImplementedError

    def offload(self, ctx: WorkerContext, job: Job, step: str, fn: Callable[..., T], *args: Any) -> T:
        """
        Run a blocking step on the task pool.

        Failures are converted to outcomes and raised as StageAborted:
        content errors fail the job, transient errors retry after 30s and
        anything unexpected is reported as a worker fault retried after 60s.

        Args:
            ctx: Worker context
            job: Job being processed
            step: Short description used in logs and error messages
            fn: Blocking callable
            *args: Arguments for fn

        Returns:
            Whatever fn returns
        """
        try:
            return ctx.offload(fn, *args)
        except ContentError as e:
            logger.warning(f"Job {job.id} {step} failed permanently: {e}")
            raise StageAborted(Failed(error=str(e)))
        except (TransientError, SQLAlchemyError) as e:
            logger.warning(f"Job {job.id} {step} failed, will retry: {e}")
            raise StageAborted(Retry(delay=TRANSIENT_RETRY_DELAY, error=str(e)))
        except WorkerFault as e:
            logger.error(f"Job {job.id} {step} task crashed: {e}", exc_info=True)
            raise StageAborted(Retry(delay=FAULT_RETRY_DELAY, error=f"worker fault during {step}: {e}"))
