"""Analyze stage: decide which derived assets a document version needs."""

import logging
from dataclasses import dataclass, field
from typing import List

from papercrate.context import WorkerContext
from papercrate.handlers.base import JobHandler, Outcome, Success
from papercrate.models.job import Job
from papercrate.schemas.job import AnalyzePayload, OcrPayload, ThumbnailPayload
from papercrate.services.documents import (
    OCR_TEXT_ASSET_TYPE,
    OCR_UNSUPPORTED_REASON,
    document_is_pdf,
    find_asset,
    load_document_version,
    merge_json,
    thumbnail_support,
)
from papercrate.services.job_queue import (
    JOB_ANALYZE_DOCUMENT,
    JOB_GENERATE_OCR_TEXT,
    JOB_GENERATE_THUMBNAILS,
    enqueue_job,
)

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """What the analysis decided for one version."""

    thumbnail_supported: bool
    ocr_supported: bool
    enqueued: List[str] = field(default_factory=list)


class AnalyzeDocumentHandler(JobHandler):
    """Inspect a document and fan out to thumbnail and OCR stages."""

    job_type = JOB_ANALYZE_DOCUMENT
    payload_model = AnalyzePayload

    def process(self, ctx: WorkerContext, job: Job, payload: AnalyzePayload) -> Outcome:
        result = self.offload(ctx, job, "analyze", analyze_document, ctx, payload)
        logger.info(
            f"Analyzed version {payload.document_version_id}: "
            f"thumbnails={result.thumbnail_supported} ocr={result.ocr_supported} "
            f"enqueued={result.enqueued or 'nothing'}"
        )
        return Success()


def analyze_document(ctx: WorkerContext, payload: AnalyzePayload) -> AnalysisResult:
    """
    Record capability flags on the version and enqueue follow-on stages.

    OCR is only enqueued when no OCR text exists yet unless ``force`` is set,
    so repeated reanalysis does not redo text extraction. The summary update
    and the new jobs are committed together.

    Args:
        ctx: Worker context
        payload: Analyze payload

    Returns:
        AnalysisResult describing the decisions taken
    """
    with ctx.session() as db:
        loaded = load_document_version(db, payload.document_id, payload.document_version_id)
        document, version = loaded.document, loaded.version

        thumbnails_supported, thumbnail_reason = thumbnail_support(document)
        ocr_supported = document_is_pdf(document)

        existing_ocr = find_asset(db, version.id, OCR_TEXT_ASSET_TYPE)
        skip_ocr = existing_ocr is not None and not payload.force

        version.operations_summary = merge_json(
            version.operations_summary,
            thumbnail_supported=thumbnails_supported,
            thumbnail_reason=thumbnail_reason,
            ocr_supported=ocr_supported,
            ocr_reason=None if ocr_supported else OCR_UNSUPPORTED_REASON,
        )

        result = AnalysisResult(
            thumbnail_supported=thumbnails_supported,
            ocr_supported=ocr_supported,
        )

        if thumbnails_supported:
            follow_up = ThumbnailPayload(
                document_id=payload.document_id,
                document_version_id=payload.document_version_id,
                force=payload.force,
            )
            enqueue_job(db, JOB_GENERATE_THUMBNAILS, follow_up.model_dump(mode="json"), commit=False)
            result.enqueued.append(JOB_GENERATE_THUMBNAILS)

        if ocr_supported and not skip_ocr:
            follow_up = OcrPayload(
                document_id=payload.document_id,
                document_version_id=payload.document_version_id,
                force=payload.force,
            )
            enqueue_job(db, JOB_GENERATE_OCR_TEXT, follow_up.model_dump(mode="json"), commit=False)
            result.enqueued.append(JOB_GENERATE_OCR_TEXT)
        elif ocr_supported:
            logger.info(f"OCR text already present for version {version.id}; not re-extracting")

        db.commit()

    return result
