"""Application configuration using Pydantic Settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str
    DATABASE_MAX_POOL_SIZE: int = 2

    # Blob storage (S3 compatible)
    S3_BUCKET: str
    AWS_ENDPOINT_URL: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_REGION: str = "us-east-1"

    # Search index (Quickwit)
    QUICKWIT_ENDPOINT: Optional[str] = None
    QUICKWIT_INDEX: Optional[str] = None

    # Worker
    WORKER_POLL_INTERVAL: float = 2.0
    WORKER_MAX_ATTEMPTS: int = 10  # 0 disables the ceiling
    WORKER_LEASE_TIMEOUT: int = 1800
    WORKER_RECLAIM_INTERVAL: int = 60
    WORKER_TASK_THREADS: int = 2
    WORKER_EMBEDDED: bool = False

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def search_enabled(self) -> bool:
        """Whether both search ingest settings are present."""
        return bool(self.QUICKWIT_ENDPOINT) and bool(self.QUICKWIT_INDEX)

    def redacted_database_url(self) -> str:
        """Database URL safe for logging."""
        return redact_database_url(self.DATABASE_URL)


def redact_database_url(raw: str) -> str:
    """Replace the password in a database URL with asterisks."""
    try:
        url = make_url(raw)
    except ArgumentError:
        return "***"
    return url.render_as_string(hide_password=True)
