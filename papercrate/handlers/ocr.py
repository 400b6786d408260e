"""OCR stage: produce a plain-text rendition of PDF documents."""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from papercrate.context import WorkerContext
from papercrate.database import utcnow
from papercrate.errors import ContentError, PapercrateError
from papercrate.handlers.base import Failed, JobHandler, Outcome, Success
from papercrate.models.document import Document, DocumentAsset, DocumentVersion
from papercrate.models.job import Job
from papercrate.schemas.job import IndexPayload, OcrPayload
from papercrate.services.documents import (
    OCR_TEXT_ASSET_TYPE,
    asset_storage_key,
    document_is_pdf,
    find_asset,
    is_pdf,
    load_document_version,
    upsert_asset,
)
from papercrate.services.job_queue import JOB_GENERATE_OCR_TEXT, JOB_INDEX_DOCUMENT_TEXT, enqueue_job
from papercrate.services.pdf_parser import OcrError, extract_text_from_pdf, has_enough_text, run_ocr

logger = logging.getLogger(__name__)

TEXT_MIME_TYPE = "text/plain"

SOURCE_PDF_TEXT = "pdf-text"
SOURCE_OCR = "ocr"

NO_TEXT_ERROR = "no text extracted and OCR unavailable"


@dataclass
class OcrContext:
    """State loaded before extraction."""

    document: Document
    version: DocumentVersion
    existing_asset: Optional[DocumentAsset]
    skip: bool


@dataclass
class OcrGeneration:
    """Extracted text and how it was obtained."""

    text: str
    source: str


class GenerateOcrTextHandler(JobHandler):
    """Extract text from a PDF, running OCR when it has no usable text layer."""

    job_type = JOB_GENERATE_OCR_TEXT
    payload_model = OcrPayload

    def process(self, ctx: WorkerContext, job: Job, payload: OcrPayload) -> Outcome:
        context = self.offload(ctx, job, "load ocr context", load_ocr_context, ctx, payload)
        if context.skip:
            logger.info(f"Job {job.id}: OCR not needed or already present; skipping")
            return Success()

        data = self.offload(ctx, job, "fetch document", ctx.storage.get_object, context.version.s3_key)

        generation = self.offload(
            ctx,
            job,
            "extract text",
            generate_ocr_text,
            context.document.content_type,
            context.document.original_name,
            data,
        )
        if generation is None:
            logger.warning(f"Job {job.id}: no text extracted from document; failing job")
            return Failed(error=NO_TEXT_ERROR)

        # Reuse the existing asset id so re-runs overwrite the same object
        asset_id = context.existing_asset.id if context.existing_asset is not None else uuid.uuid4()
        s3_key = asset_storage_key(
            context.document.id, context.version.version_number, OCR_TEXT_ASSET_TYPE, asset_id
        )

        self.offload(
            ctx,
            job,
            "upload ocr text",
            ctx.storage.put_object,
            s3_key,
            generation.text.encode("utf-8"),
            TEXT_MIME_TYPE,
        )
        self.offload(
            ctx,
            job,
            "persist ocr metadata",
            persist_ocr_metadata,
            ctx,
            context.version.id,
            asset_id,
            s3_key,
            generation.source,
        )

        logger.info(
            f"Stored {len(generation.text)} characters of text ({generation.source}) "
            f"for version {context.version.id}"
        )

        if ctx.settings.search_enabled:
            follow_up = IndexPayload(
                document_id=payload.document_id,
                document_version_id=payload.document_version_id,
            )
            try:
                ctx.offload(enqueue_follow_up, ctx, follow_up)
            except (PapercrateError, SQLAlchemyError) as e:
                logger.warning(f"Job {job.id}: failed to enqueue index job: {e}")

        return Success()


def load_ocr_context(ctx: WorkerContext, payload: OcrPayload) -> OcrContext:
    """Load the version and decide whether extraction should run at all."""
    with ctx.session() as db:
        loaded = load_document_version(db, payload.document_id, payload.document_version_id)
        existing = find_asset(db, loaded.version.id, OCR_TEXT_ASSET_TYPE)

    if not document_is_pdf(loaded.document):
        skip = True
    else:
        skip = existing is not None and not payload.force

    return OcrContext(
        document=loaded.document,
        version=loaded.version,
        existing_asset=existing,
        skip=skip,
    )


def generate_ocr_text(
    content_type: Optional[str], original_name: Optional[str], data: bytes
) -> Optional[OcrGeneration]:
    """
    Obtain text for a PDF.

    The embedded text layer is used when it is long enough; otherwise the
    document is passed through OCR.

    Returns:
        OcrGeneration, or None if neither path yields enough text
    """
    if not is_pdf(content_type, original_name):
        return None

    try:
        text = extract_text_from_pdf(data)
    except ContentError as e:
        logger.info(f"No usable PDF text layer: {e}")
        text = None

    if has_enough_text(text):
        return OcrGeneration(text=text, source=SOURCE_PDF_TEXT)

    try:
        ocr_text = run_ocr(data)
    except OcrError as e:
        logger.warning(f"OCR command failed: {e}")
        return None

    if ocr_text is None:
        return None
    return OcrGeneration(text=ocr_text, source=SOURCE_OCR)


def persist_ocr_metadata(
    ctx: WorkerContext, version_id: uuid.UUID, asset_id: uuid.UUID, s3_key: str, source: str
) -> None:
    with ctx.session() as db:
        upsert_asset(
            db,
            version_id=version_id,
            asset_type=OCR_TEXT_ASSET_TYPE,
            asset_id=asset_id,
            s3_key=s3_key,
            mime_type=TEXT_MIME_TYPE,
            metadata={
                "generated_at": utcnow().isoformat() + "Z",
                "source": source,
            },
        )


def enqueue_follow_up(ctx: WorkerContext, payload: IndexPayload) -> None:
    with ctx.session() as db:
        enqueue_job(db, JOB_INDEX_DOCUMENT_TEXT, payload.model_dump(mode="json"))
