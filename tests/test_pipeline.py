"""End-to-end tests running the worker over the full pipeline."""

from collections import Counter

from sqlalchemy import select

from conftest import pdf_bytes, png_bytes
from papercrate.handlers import HandlerRegistry, default_handlers
from papercrate.models import DocumentAsset, Job
from papercrate.schemas.job import AnalyzePayload
from papercrate.services.documents import OCR_TEXT_ASSET_TYPE, PREVIEW_ASSET_TYPE, THUMBNAIL_ASSET_TYPE
from papercrate.services.job_queue import (
    JOB_ANALYZE_DOCUMENT,
    JOB_GENERATE_OCR_TEXT,
    JOB_GENERATE_THUMBNAILS,
    JOB_INDEX_DOCUMENT_TEXT,
)
from papercrate.worker import Worker


def _jobs(session_factory):
    with session_factory() as session:
        return list(session.execute(select(Job)).scalars())


def _asset_types(session_factory, version_id):
    with session_factory() as session:
        return set(
            session.execute(
                select(DocumentAsset.asset_type).where(DocumentAsset.document_version_id == version_id)
            ).scalars()
        )


def test_pdf_runs_every_stage(ctx, enqueue, make_document, session_factory, search_recorder):
    """Test one analyze request fans out to exactly four successful jobs."""
    document_id, version_id = make_document(pdf_bytes(pages=2), "application/pdf", "report.pdf")
    enqueue(JOB_ANALYZE_DOCUMENT, AnalyzePayload(document_id=document_id, document_version_id=version_id))

    worker = Worker(ctx, HandlerRegistry(default_handlers()))
    assert worker.run_until_idle() == 4

    jobs = _jobs(session_factory)
    assert Counter(job.job_type for job in jobs) == Counter(
        [JOB_ANALYZE_DOCUMENT, JOB_GENERATE_THUMBNAILS, JOB_GENERATE_OCR_TEXT, JOB_INDEX_DOCUMENT_TEXT]
    )
    assert all(job.status == "succeeded" for job in jobs)
    assert all(job.attempts == 1 for job in jobs)

    assert _asset_types(session_factory, version_id) == {
        THUMBNAIL_ASSET_TYPE,
        PREVIEW_ASSET_TYPE,
        OCR_TEXT_ASSET_TYPE,
    }
    assert len(search_recorder.requests) == 1


def test_image_runs_analyze_and_thumbnail(ctx, enqueue, make_document, session_factory, search_recorder):
    """Test an image only needs analysis and thumbnails."""
    document_id, version_id = make_document(png_bytes(), "image/png", "photo.png")
    enqueue(JOB_ANALYZE_DOCUMENT, AnalyzePayload(document_id=document_id, document_version_id=version_id))

    worker = Worker(ctx, HandlerRegistry(default_handlers()))
    assert worker.run_until_idle() == 2

    jobs = _jobs(session_factory)
    assert sorted(job.job_type for job in jobs) == sorted([JOB_ANALYZE_DOCUMENT, JOB_GENERATE_THUMBNAILS])
    assert all(job.status == "succeeded" for job in jobs)
    assert _asset_types(session_factory, version_id) == {THUMBNAIL_ASSET_TYPE, PREVIEW_ASSET_TYPE}
    assert search_recorder.requests == []


def test_reanalysis_is_idempotent(ctx, enqueue, make_document, session_factory, storage):
    """Test rerunning analysis without force leaves assets untouched."""
    document_id, version_id = make_document(pdf_bytes(), "application/pdf", "report.pdf")
    payload = AnalyzePayload(document_id=document_id, document_version_id=version_id)
    worker = Worker(ctx, HandlerRegistry(default_handlers()))

    enqueue(JOB_ANALYZE_DOCUMENT, payload)
    worker.run_until_idle()
    puts = storage.puts

    enqueue(JOB_ANALYZE_DOCUMENT, payload)
    assert worker.run_until_idle() == 2

    assert storage.puts == puts
    counts = Counter(job.job_type for job in _jobs(session_factory))
    assert counts[JOB_GENERATE_OCR_TEXT] == 1
    assert counts[JOB_GENERATE_THUMBNAILS] == 2
