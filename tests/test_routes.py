"""Tests for the HTTP surface."""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from conftest import pdf_bytes, png_bytes
from papercrate.main import create_app
from papercrate.models import Job
from papercrate.services.job_queue import JOB_ANALYZE_DOCUMENT, enqueue_job, mark_job_failed, reserve_job


@pytest.fixture
def client(ctx):
    return TestClient(create_app(ctx))


def _analyze_payloads(session_factory):
    with session_factory() as session:
        rows = session.execute(select(Job).where(Job.job_type == JOB_ANALYZE_DOCUMENT)).scalars()
        return [job.payload for job in rows]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_request_assets_enqueues_analyze(client, make_document, session_factory):
    """Test requesting assets schedules analysis of the current version."""
    document_id, version_id = make_document(pdf_bytes(), "application/pdf", "report.pdf")

    response = client.post(f"/documents/{document_id}/assets", params={"force": "true"})

    assert response.status_code == 202
    assert _analyze_payloads(session_factory) == [
        {"document_id": str(document_id), "document_version_id": str(version_id), "force": True}
    ]


def test_request_assets_for_missing_or_deleted_document(client, make_document, session_factory):
    """Test unknown and deleted documents are not found."""
    deleted_id, _ = make_document(pdf_bytes(), "application/pdf", "old.pdf", deleted=True)

    assert client.post(f"/documents/{uuid.uuid4()}/assets").status_code == 404
    assert client.post(f"/documents/{deleted_id}/assets").status_code == 404
    assert _analyze_payloads(session_factory) == []


def test_reanalyze_all_forces_every_active_document(client, make_document, session_factory):
    """Test bulk reanalysis covers active documents only."""
    make_document(pdf_bytes(), "application/pdf", "a.pdf")
    make_document(png_bytes(), "image/png", "b.png")
    make_document(pdf_bytes(), "application/pdf", "gone.pdf", deleted=True)

    response = client.post("/documents/reanalyze")

    assert response.status_code == 202
    assert response.json() == {"queued": 2}
    payloads = _analyze_payloads(session_factory)
    assert len(payloads) == 2
    assert all(payload["force"] is True for payload in payloads)


def test_reanalyze_selection(client, make_document, session_factory):
    """Test selected documents are deduplicated and enqueued."""
    document_id, _ = make_document(pdf_bytes(), "application/pdf", "a.pdf")
    make_document(pdf_bytes(), "application/pdf", "b.pdf")

    response = client.post(
        "/documents/reanalyze/selection",
        json={"document_ids": [str(document_id), str(document_id)]},
    )

    assert response.status_code == 202
    assert response.json() == {"queued": 1}
    payloads = _analyze_payloads(session_factory)
    assert [payload["document_id"] for payload in payloads] == [str(document_id)]
    assert payloads[0]["force"] is False


def test_reanalyze_selection_rejects_bad_input(client, make_document, session_factory):
    """Test empty selections and unknown ids are rejected without enqueueing."""
    document_id, _ = make_document(pdf_bytes(), "application/pdf", "a.pdf")

    empty = client.post("/documents/reanalyze/selection", json={"document_ids": []})
    unknown = client.post(
        "/documents/reanalyze/selection",
        json={"document_ids": [str(document_id), str(uuid.uuid4())], "force": True},
    )

    assert empty.status_code == 400
    assert unknown.status_code == 400
    assert _analyze_payloads(session_factory) == []


def test_job_inspection(client, session_factory):
    """Test operators can list, count and fetch jobs."""
    with session_factory() as session:
        enqueue_job(session, JOB_ANALYZE_DOCUMENT, {"n": 1})
        enqueue_job(session, JOB_ANALYZE_DOCUMENT, {"n": 2})
        failed = reserve_job(session, [JOB_ANALYZE_DOCUMENT])
        mark_job_failed(session, failed.id, "document/version mismatch")

    stats = client.get("/jobs/stats")
    assert stats.status_code == 200
    assert stats.json() == {"queued": 1, "processing": 0, "succeeded": 0, "failed": 1}

    listed = client.get("/jobs", params={"status": "failed"})
    assert listed.status_code == 200
    assert [job["id"] for job in listed.json()] == [str(failed.id)]

    detail = client.get(f"/jobs/{failed.id}")
    assert detail.status_code == 200
    assert detail.json()["last_error"] == "document/version mismatch"
    assert detail.json()["attempts"] == 1

    assert client.get(f"/jobs/{uuid.uuid4()}").status_code == 404
