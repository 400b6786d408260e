"""Database engine, session factory and declarative base."""

import logging
from datetime import datetime, timezone
from typing import Iterator

from fastapi import Request
from sqlalchemy import JSON, create_engine, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from tenacity import before_sleep_log, retry, stop_after_delay, wait_fixed

logger = logging.getLogger(__name__)

Base = declarative_base()

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_engine(database_url: str, pool_size: int = 2) -> Engine:
    """Create an engine sized for a single worker or API process."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    return create_engine(
        url,
        pool_size=max(pool_size, 1),
        pool_timeout=10,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory whose objects stay readable after commit."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@retry(
    stop=stop_after_delay(60),
    wait=wait_fixed(2),
    before_sleep=before_sleep_log(logger, logging.INFO),
    reraise=True,
)
def wait_for_database(session_factory: sessionmaker) -> None:
    """Block until the jobs table is queryable (migrations applied)."""
    db = session_factory()
    try:
        db.execute(text("SELECT 1 FROM jobs LIMIT 1"))
    finally:
        db.close()
    logger.info("Database is ready")


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session from the application context."""
    with request.app.state.context.session() as db:
        yield db
