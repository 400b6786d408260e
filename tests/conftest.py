"""Pytest configuration and fixtures."""

import io
import threading
import uuid
from typing import Dict, List, Optional

import fitz
import httpx
import pytest
from PIL import Image

from papercrate.config import Settings
from papercrate.context import WorkerContext
from papercrate.database import Base, build_engine, create_session_factory, utcnow
from papercrate.errors import StorageError
from papercrate.models import Document, DocumentVersion
from papercrate.services.job_queue import enqueue_job
from papercrate.services.search import SearchIndexClient
from papercrate.services.storage import ObjectStorage

SAMPLE_TEXT = (
    "Quarterly Revenue Report\n"
    "Prepared for the finance committee\n"
    "Totals are reported in thousands of euros"
)


class InMemoryStorage(ObjectStorage):
    """Blob store kept in a dict."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, Optional[str]] = {}
        self.puts = 0
        self._lock = threading.Lock()

    def put_object(self, key, data, content_type=None, content_disposition=None):
        with self._lock:
            self.objects[key] = bytes(data)
            self.content_types[key] = content_type
            self.puts += 1

    def get_object(self, key):
        with self._lock:
            if key not in self.objects:
                raise StorageError(f"object {key} not found")
            return self.objects[key]

    def delete_object(self, key):
        with self._lock:
            self.objects.pop(key, None)

    def presign_get_object(self, key, expires_in):
        return f"memory://{key}?expires={expires_in}"


class SearchRecorder:
    """httpx transport handler that records ingest requests."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"num_docs_for_processing": 1})


def png_bytes(width: int = 800, height: int = 600, color=(200, 40, 40)) -> bytes:
    """Encode a solid-colour PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def pdf_bytes(text: Optional[str] = SAMPLE_TEXT, pages: int = 1) -> bytes:
    """Build an A4 PDF, optionally writing text on every page."""
    document = fitz.open()
    for _ in range(pages):
        page = document.new_page(width=595, height=842)
        if text:
            page.insert_text((72, 72), text, fontsize=12)
    data = document.tobytes()
    document.close()
    return data


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a per-test SQLite file."""
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        S3_BUCKET="papercrate-test",
        QUICKWIT_ENDPOINT="http://quickwit.test:7280",
        QUICKWIT_INDEX="documents",
        WORKER_POLL_INTERVAL=0.01,
        _env_file=None,
    )


@pytest.fixture
def engine(settings):
    """Create a test database for each test."""
    engine = build_engine(settings.DATABASE_URL)
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()

    yield session

    session.close()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def search_recorder():
    return SearchRecorder()


@pytest.fixture
def ctx(settings, session_factory, storage, search_recorder):
    """Worker context wired to the test database and fakes."""
    search = SearchIndexClient(
        settings.QUICKWIT_ENDPOINT,
        settings.QUICKWIT_INDEX,
        transport=httpx.MockTransport(search_recorder),
    )
    context = WorkerContext(
        settings=settings,
        session_factory=session_factory,
        storage=storage,
        search=search,
    )

    yield context

    context.close()


@pytest.fixture
def make_document(session_factory, storage):
    """Factory creating a document with a single stored version."""

    def _make(data: bytes, content_type: Optional[str], original_name: str, title="Quarterly Report", deleted=False):
        document_id = uuid.uuid4()
        version_id = uuid.uuid4()
        s3_key = f"documents/{document_id}/v1/original"
        storage.put_object(s3_key, data, content_type)

        with session_factory() as session:
            session.add(
                Document(
                    id=document_id,
                    filename=original_name,
                    original_name=original_name,
                    content_type=content_type,
                    title=title,
                    current_version_id=version_id,
                    metadata_={},
                    deleted_at=utcnow() if deleted else None,
                )
            )
            session.add(
                DocumentVersion(
                    id=version_id,
                    document_id=document_id,
                    version_number=1,
                    s3_key=s3_key,
                    size_bytes=len(data),
                    checksum="",
                    operations_summary={},
                    metadata_={},
                )
            )
            session.commit()

        return document_id, version_id

    return _make


@pytest.fixture
def enqueue(session_factory):
    """Factory enqueueing a job whose payload is a pydantic model."""

    def _enqueue(job_type, payload, run_after=None):
        body = payload.model_dump(mode="json") if hasattr(payload, "model_dump") else payload
        with session_factory() as session:
            return enqueue_job(session, job_type, body, run_after=run_after)

    return _enqueue
