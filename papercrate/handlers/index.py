"""Index stage: push extracted document text into the search index."""

import logging
from dataclasses import dataclass
from typing import Optional

from papercrate.context import WorkerContext
from papercrate.handlers.base import Failed, JobHandler, Outcome, Success
from papercrate.models.document import Document, DocumentAsset, DocumentVersion
from papercrate.models.job import Job
from papercrate.schemas.job import IndexPayload
from papercrate.services.documents import OCR_TEXT_ASSET_TYPE, find_asset, load_document_version
from papercrate.services.job_queue import JOB_INDEX_DOCUMENT_TEXT

logger = logging.getLogger(__name__)


@dataclass
class IndexContext:
    """Rows needed to build the search document."""

    document: Document
    version: DocumentVersion
    text_asset: Optional[DocumentAsset]


class IndexDocumentTextHandler(JobHandler):
    """Submit a version's OCR text to the search ingest endpoint."""

    job_type = JOB_INDEX_DOCUMENT_TEXT
    payload_model = IndexPayload

    def process(self, ctx: WorkerContext, job: Job, payload: IndexPayload) -> Outcome:
        if ctx.search is None:
            logger.warning("Search index not configured; skipping indexing")
            return Success()

        context = self.offload(ctx, job, "load index context", load_index_context, ctx, payload)
        if context.text_asset is None:
            logger.warning(f"Job {job.id}: missing OCR text asset; failing indexing job")
            return Failed(error="missing OCR text asset")

        data = self.offload(ctx, job, "download ocr text", ctx.storage.get_object, context.text_asset.s3_key)
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning(f"Job {job.id}: OCR text not valid UTF-8: {e}")
            return Failed(error="ocr text not valid UTF-8")

        if not text.strip():
            logger.warning(f"Job {job.id}: OCR text empty")
            return Failed(error="ocr text empty")

        document = {
            "document_id": str(context.document.id),
            "version_id": str(context.version.id),
            "title": context.document.title.lower(),
            "text": text.lower(),
        }
        self.offload(ctx, job, "search ingest", ctx.search.ingest, document)
        return Success()


def load_index_context(ctx: WorkerContext, payload: IndexPayload) -> IndexContext:
    with ctx.session() as db:
        loaded = load_document_version(db, payload.document_id, payload.document_version_id)
        text_asset = find_asset(db, loaded.version.id, OCR_TEXT_ASSET_TYPE)

    return IndexContext(document=loaded.document, version=loaded.version, text_asset=text_asset)
