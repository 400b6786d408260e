"""Exception hierarchy shared by the job queue and pipeline stages."""


class PapercrateError(Exception):
    """Base class for application errors."""


class TransientError(PapercrateError):
    """A failure that may succeed when the job is retried later."""


class ContentError(PapercrateError):
    """The document content cannot be processed; retrying will not help."""


class WorkerFault(PapercrateError):
    """Unexpected exception raised inside an offloaded task."""


class JobQueueError(TransientError):
    """The job store could not be read or written."""


class StorageError(TransientError):
    """The blob store rejected or failed a request."""


class SearchIndexError(TransientError):
    """The search ingest endpoint returned an error or was unreachable."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class DocumentLookupError(TransientError):
    """A document or version referenced by a job could not be loaded."""
