"""FastAPI application entry point."""

import logging
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from papercrate import __version__
from papercrate.config import Settings
from papercrate.context import WorkerContext, build_context
from papercrate.routes import documents, jobs

logger = logging.getLogger(__name__)


def create_app(context: Optional[WorkerContext] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        context: Prebuilt runtime context; built from the environment on
            startup when omitted

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_context = context is None
        if owns_context:
            settings = Settings()
            logging.basicConfig(
                level=settings.LOG_LEVEL,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            )
            app.state.context = build_context(settings)

        ctx: WorkerContext = app.state.context
        worker_thread = None
        stop_event = threading.Event()

        if ctx.settings.WORKER_EMBEDDED:
            from papercrate.worker import worker_loop

            logger.info("Starting background worker thread...")
            worker_thread = threading.Thread(
                target=worker_loop, args=(ctx, stop_event), name="papercrate-worker", daemon=True
            )
            worker_thread.start()

        yield

        logger.info("Shutting down application...")
        stop_event.set()
        if worker_thread is not None and worker_thread.is_alive():
            worker_thread.join(timeout=10)
            logger.info("Background worker thread stopped")

        if owns_context:
            ctx.close()

    app = FastAPI(
        title="Papercrate",
        description="Document asset pipeline: previews, OCR text and search indexing",
        version=__version__,
        lifespan=lifespan,
    )
    if context is not None:
        app.state.context = context

    app.include_router(documents.router)
    app.include_router(jobs.router)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
