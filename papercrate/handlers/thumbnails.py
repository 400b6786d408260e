"""Thumbnail stage: render preview and thumbnail images for a version."""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

from papercrate.context import WorkerContext
from papercrate.database import utcnow
from papercrate.errors import ContentError
from papercrate.handlers.base import JobHandler, Outcome, Success
from papercrate.models.document import Document, DocumentAsset, DocumentVersion
from papercrate.models.job import Job
from papercrate.schemas.job import ThumbnailPayload
from papercrate.services.documents import (
    PREVIEW_ASSET_TYPE,
    THUMBNAIL_ASSET_TYPE,
    asset_storage_key,
    document_is_pdf,
    find_assets,
    load_document_version,
    merge_json,
    thumbnail_support,
    upsert_asset,
)
from papercrate.services.imaging import (
    PNG_MIME_TYPE,
    GeneratedAssets,
    GeneratedImage,
    render_image_assets,
    render_pdf_assets,
)
from papercrate.services.job_queue import JOB_GENERATE_THUMBNAILS

logger = logging.getLogger(__name__)


@dataclass
class ThumbnailContext:
    """State loaded before rendering."""

    document: Document
    version: DocumentVersion
    existing_thumbnail: Optional[DocumentAsset]
    existing_preview: Optional[DocumentAsset]
    skip: bool


@dataclass
class PendingAsset:
    """An uploaded image awaiting its catalog row."""

    asset_type: str
    asset_id: uuid.UUID
    s3_key: str
    image: GeneratedImage


class GenerateThumbnailsHandler(JobHandler):
    """Render a small thumbnail and a larger preview for a document version."""

    job_type = JOB_GENERATE_THUMBNAILS
    payload_model = ThumbnailPayload

    def process(self, ctx: WorkerContext, job: Job, payload: ThumbnailPayload) -> Outcome:
        initial = self.offload(ctx, job, "load thumbnail context", load_thumbnail_context, ctx, payload)
        if initial.skip:
            logger.info(f"Job {job.id}: thumbnails already exist; skipping")
            return Success()

        data = self.offload(ctx, job, "fetch document", ctx.storage.get_object, initial.version.s3_key)
        generated = self.offload(ctx, job, "render images", render_document_images, initial.document, data)

        if generated.page_count is not None:
            self.offload(
                ctx,
                job,
                "update page count",
                persist_page_count,
                ctx,
                initial.document.id,
                initial.version.id,
                generated.page_count,
            )

        targets = {
            PREVIEW_ASSET_TYPE: (initial.existing_preview, generated.preview),
            THUMBNAIL_ASSET_TYPE: (initial.existing_thumbnail, generated.thumbnail),
        }

        pending: List[PendingAsset] = []
        for asset_type, (existing, image) in targets.items():
            # Reuse the existing asset id so re-runs overwrite the same object
            asset_id = existing.id if existing is not None else uuid.uuid4()
            s3_key = asset_storage_key(
                initial.document.id, initial.version.version_number, asset_type, asset_id
            )
            self.offload(
                ctx,
                job,
                f"upload {asset_type}",
                ctx.storage.put_object,
                s3_key,
                image.data,
                PNG_MIME_TYPE,
            )
            pending.append(PendingAsset(asset_type, asset_id, s3_key, image))

        self.offload(ctx, job, "persist thumbnail metadata", persist_image_assets, ctx, initial.version.id, pending)

        logger.info(f"Generated thumbnail and preview for version {initial.version.id}")
        return Success()


def load_thumbnail_context(ctx: WorkerContext, payload: ThumbnailPayload) -> ThumbnailContext:
    """
    Load the document, version and any previously generated images.

    Raises:
        ContentError: If the document type cannot be thumbnailed
    """
    with ctx.session() as db:
        loaded = load_document_version(db, payload.document_id, payload.document_version_id)
        existing = find_assets(db, loaded.version.id, [THUMBNAIL_ASSET_TYPE, PREVIEW_ASSET_TYPE])

    supported, reason = thumbnail_support(loaded.document)
    if not supported:
        raise ContentError(reason or "thumbnail generation not supported for this document")

    existing_thumbnail = existing.get(THUMBNAIL_ASSET_TYPE)
    existing_preview = existing.get(PREVIEW_ASSET_TYPE)

    return ThumbnailContext(
        document=loaded.document,
        version=loaded.version,
        existing_thumbnail=existing_thumbnail,
        existing_preview=existing_preview,
        skip=existing_thumbnail is not None and existing_preview is not None and not payload.force,
    )


def render_document_images(document: Document, data: bytes) -> GeneratedAssets:
    """Render PDFs from their first page, everything else as a raster image."""
    if document_is_pdf(document):
        return render_pdf_assets(data)
    return render_image_assets(data)


def persist_page_count(
    ctx: WorkerContext, document_id: uuid.UUID, version_id: uuid.UUID, page_count: int
) -> None:
    """Merge the PDF page count into the version metadata."""
    with ctx.session() as db:
        loaded = load_document_version(db, document_id, version_id)
        loaded.version.metadata_ = merge_json(loaded.version.metadata_, page_count=page_count)
        db.commit()


def persist_image_assets(
    ctx: WorkerContext, version_id: uuid.UUID, pending: List[PendingAsset]
) -> None:
    """Upsert one catalog row per generated image."""
    generated_at = utcnow().isoformat() + "Z"
    with ctx.session() as db:
        for asset in pending:
            upsert_asset(
                db,
                version_id=version_id,
                asset_type=asset.asset_type,
                asset_id=asset.asset_id,
                s3_key=asset.s3_key,
                mime_type=PNG_MIME_TYPE,
                metadata={
                    "generated_at": generated_at,
                    "width": asset.image.width,
                    "height": asset.image.height,
                },
            )
