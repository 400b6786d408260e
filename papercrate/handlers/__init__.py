"""Job handler registry and the default pipeline stages."""

import logging
from typing import Dict, Iterable, List, Optional

from papercrate.context import WorkerContext
from papercrate.handlers.analyze import AnalyzeDocumentHandler
from papercrate.handlers.base import (
    FAULT_RETRY_DELAY,
    Failed,
    JobHandler,
    Outcome,
    Retry,
    Success,
)
from papercrate.handlers.index import IndexDocumentTextHandler
from papercrate.handlers.ocr import GenerateOcrTextHandler
from papercrate.handlers.thumbnails import GenerateThumbnailsHandler
from papercrate.models.job import Job

logger = logging.getLogger(__name__)

NO_HANDLER_ERROR = "no handler registered for job type"

__all__ = [
    "HandlerRegistry",
    "JobHandler",
    "Outcome",
    "Success",
    "Retry",
    "Failed",
    "default_handlers",
    "NO_HANDLER_ERROR",
]


class HandlerRegistry:
    """Mapping from job type to the handler that executes it."""

    def __init__(self, handlers: Iterable[JobHandler]):
        """Build the registry once at startup."""
        self._handlers: Dict[str, JobHandler] = {}
        for handler in handlers:
            if not handler.job_type:
                raise ValueError(f"{handler.__class__.__name__} does not declare a job_type")
            if handler.job_type in self._handlers:
                raise ValueError(f"Duplicate handler for job type {handler.job_type}")
            self._handlers[handler.job_type] = handler

    def get(self, job_type: str) -> Optional[JobHandler]:
        return self._handlers.get(job_type)

    def job_types(self) -> List[str]:
        return sorted(self._handlers)

    def dispatch(self, ctx: WorkerContext, job: Job) -> Outcome:
        """Run the job's handler, converting escaped exceptions to a retry."""
        handler = self.get(job.job_type)
        if handler is None:
            logger.error(f"No handler registered for job type {job.job_type} (job {job.id})")
            return Failed(error=NO_HANDLER_ERROR)

        try:
            return handler.handle(ctx, job)
        except Exception as e:
            logger.error(f"Handler for {job.job_type} crashed on job {job.id}: {e}", exc_info=True)
            return Retry(delay=FAULT_RETRY_DELAY, error=f"worker fault: {e}")


def default_handlers() -> List[JobHandler]:
    """The four pipeline stages."""
    return [
        AnalyzeDocumentHandler(),
        GenerateThumbnailsHandler(),
        GenerateOcrTextHandler(),
        IndexDocumentTextHandler(),
    ]
