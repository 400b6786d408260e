"""Document routes that schedule pipeline work."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from papercrate.database import get_db
from papercrate.errors import JobQueueError
from papercrate.models.document import Document
from papercrate.schemas.document import ReanalyzeResponse, ReanalyzeSelectionRequest
from papercrate.schemas.job import AnalyzePayload
from papercrate.services.documents import list_active_documents
from papercrate.services.job_queue import JOB_ANALYZE_DOCUMENT, enqueue_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


def _enqueue_analyze(db: Session, document: Document, force: bool) -> None:
    payload = AnalyzePayload(
        document_id=document.id,
        document_version_id=document.current_version_id,
        force=force,
    )
    try:
        enqueue_job(db, JOB_ANALYZE_DOCUMENT, payload.model_dump(mode="json"), commit=False)
    except JobQueueError as e:
        raise HTTPException(status_code=500, detail=f"failed to enqueue analyze job: {e}")


@router.post("/{document_id}/assets", status_code=status.HTTP_202_ACCEPTED)
def request_document_assets(
    document_id: uuid.UUID,
    force: bool = False,
    db: Session = Depends(get_db),
):
    """Schedule analysis (and derived assets) for a document's current version."""
    document = db.get(Document, document_id)
    if document is None or document.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Document not found")

    _enqueue_analyze(db, document, force)
    db.commit()

    logger.info(f"Requested assets for document {document_id} (force={force})")
    return {"status": "accepted"}


@router.post("/reanalyze", response_model=ReanalyzeResponse, status_code=status.HTTP_202_ACCEPTED)
def reanalyze_all_documents(db: Session = Depends(get_db)):
    """Force reanalysis of every document."""
    documents = list_active_documents(db)
    for document in documents:
        _enqueue_analyze(db, document, force=True)
    db.commit()

    logger.info(f"Queued reanalysis of {len(documents)} documents")
    return ReanalyzeResponse(queued=len(documents))


@router.post(
    "/reanalyze/selection",
    response_model=ReanalyzeResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def reanalyze_selected_documents(
    data: ReanalyzeSelectionRequest,
    db: Session = Depends(get_db),
):
    """Reanalyze a chosen set of documents."""
    if not data.document_ids:
        raise HTTPException(status_code=400, detail="document_ids must not be empty")

    document_ids = sorted(set(data.document_ids))
    documents = list_active_documents(db, document_ids)
    if len(documents) != len(document_ids):
        raise HTTPException(
            status_code=400,
            detail="one or more documents do not exist or are inaccessible",
        )

    for document in documents:
        _enqueue_analyze(db, document, data.force)
    db.commit()

    return ReanalyzeResponse(queued=len(documents))
