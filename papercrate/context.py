"""Explicit runtime context shared by the worker loop and handlers."""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from papercrate.config import Settings
from papercrate.database import build_engine, create_session_factory
from papercrate.errors import PapercrateError, WorkerFault
from papercrate.services.search import SearchIndexClient
from papercrate.services.storage import ObjectStorage, S3Storage

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerContext:
    """Connections, clients and the blocking-task pool for one process."""

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        storage: ObjectStorage,
        search: Optional[SearchIndexClient] = None,
        task_threads: int = 2,
    ):
        """Initialize the context."""
        self.settings = settings
        self.session_factory = session_factory
        self.storage = storage
        self.search = search
        self._executor = ThreadPoolExecutor(
            max_workers=max(task_threads, 1),
            thread_name_prefix="papercrate-task",
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a database session that is always closed afterwards."""
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def offload(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run a blocking call on the task pool and wait for its result.

        Raises:
            WorkerFault: If the call fails with an exception outside the
                application hierarchy
        """
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result()
        except (PapercrateError, SQLAlchemyError):
            raise
        except Exception as e:
            raise WorkerFault(str(e)) from e

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def build_context(settings: Settings) -> WorkerContext:
    """Wire the database, blob store and search client from settings."""
    engine = build_engine(settings.DATABASE_URL, settings.DATABASE_MAX_POOL_SIZE)
    storage = S3Storage.from_settings(settings)

    search = None
    if settings.search_enabled:
        search = SearchIndexClient(settings.QUICKWIT_ENDPOINT, settings.QUICKWIT_INDEX)

    logger.info(
        f"Loaded configuration: database={settings.redacted_database_url()} "
        f"pool_size={settings.DATABASE_MAX_POOL_SIZE} s3_bucket={settings.S3_BUCKET} "
        f"search_enabled={settings.search_enabled}"
    )

    return WorkerContext(
        settings=settings,
        session_factory=create_session_factory(engine),
        storage=storage,
        search=search,
        task_threads=settings.WORKER_TASK_THREADS,
    )
