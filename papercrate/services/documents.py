"""Document catalog helpers shared by the pipeline stages."""

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from papercrate.errors import DocumentLookupError
from papercrate.models.document import Document, DocumentAsset, DocumentVersion

logger = logging.getLogger(__name__)

THUMBNAIL_ASSET_TYPE = "thumbnail"
PREVIEW_ASSET_TYPE = "preview"
OCR_TEXT_ASSET_TYPE = "ocr-text"

PDF_MIME_TYPE = "application/pdf"

THUMBNAIL_MIME_TYPES = frozenset(
    [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/tiff",
        "image/bmp",
        "image/webp",
        PDF_MIME_TYPE,
    ]
)
THUMBNAIL_EXTENSIONS = frozenset(["jpg", "jpeg", "png", "gif", "tif", "tiff", "bmp", "webp", "pdf"])

THUMBNAIL_UNSUPPORTED_REASON = "content type not supported for thumbnails"
OCR_UNSUPPORTED_REASON = "document is not a PDF"


@dataclass
class VersionContext:
    """A document together with the version a job operates on."""

    document: Document
    version: DocumentVersion


def _extension(name: Optional[str]) -> str:
    return os.path.splitext(name or "")[1].lstrip(".").lower()


def is_pdf(content_type: Optional[str], original_name: Optional[str]) -> bool:
    """Detect PDFs by MIME type, falling back to the file extension."""
    if content_type and content_type.strip().lower() == PDF_MIME_TYPE:
        return True
    return _extension(original_name) == "pdf"


def document_is_pdf(document: Document) -> bool:
    return is_pdf(document.content_type, document.original_name)


def thumbnail_support(document: Document) -> Tuple[bool, Optional[str]]:
    """
    Decide whether previews can be rendered for a document.

    Returns:
        (supported, reason) where reason explains a rejection
    """
    if document.content_type and document.content_type.strip().lower() in THUMBNAIL_MIME_TYPES:
        return True, None

    if _extension(document.original_name) in THUMBNAIL_EXTENSIONS:
        return True, None

    return False, THUMBNAIL_UNSUPPORTED_REASON


def load_document_version(
    db: Session, document_id: uuid.UUID, version_id: uuid.UUID
) -> VersionContext:
    """
    Load a version and its owning document.

    Raises:
        DocumentLookupError: If either row is missing or they do not belong together
    """
    version = db.get(DocumentVersion, version_id)
    if version is None:
        raise DocumentLookupError(f"document version {version_id} not found")

    if version.document_id != document_id:
        raise DocumentLookupError("document/version mismatch")

    document = db.get(Document, document_id)
    if document is None:
        raise DocumentLookupError(f"document {document_id} not found")

    return VersionContext(document=document, version=version)


def find_asset(db: Session, version_id: uuid.UUID, asset_type: str) -> Optional[DocumentAsset]:
    """Fetch the asset of one type for a version, if present."""
    return db.execute(
        select(DocumentAsset).where(
            DocumentAsset.document_version_id == version_id,
            DocumentAsset.asset_type == asset_type,
        )
    ).scalar_one_or_none()


def find_assets(
    db: Session, version_id: uuid.UUID, asset_types: Sequence[str]
) -> Dict[str, DocumentAsset]:
    """Fetch several asset types for a version, keyed by type."""
    rows = db.execute(
        select(DocumentAsset).where(
            DocumentAsset.document_version_id == version_id,
            DocumentAsset.asset_type.in_(list(asset_types)),
        )
    ).scalars()
    return {asset.asset_type: asset for asset in rows}


def asset_storage_key(
    document_id: uuid.UUID, version_number: int, asset_type: str, asset_id: uuid.UUID
) -> str:
    return f"documents/{document_id}/v{version_number}/assets/{asset_type}/{asset_id}"


def upsert_asset(
    db: Session,
    version_id: uuid.UUID,
    asset_type: str,
    asset_id: uuid.UUID,
    s3_key: str,
    mime_type: str,
    metadata: Dict[str, Any],
) -> DocumentAsset:
    """
    Insert or overwrite the asset row keyed by (version, asset type).

    A row inserted concurrently by another worker is picked up and
    updated instead of failing the unique constraint.
    """
    retried = False
    while True:
        asset = find_asset(db, version_id, asset_type)
        if asset is None:
            asset = DocumentAsset(
                id=asset_id,
                document_version_id=version_id,
                asset_type=asset_type,
            )
            db.add(asset)

        asset.s3_key = s3_key
        asset.mime_type = mime_type
        asset.metadata_ = dict(metadata)

        try:
            db.commit()
            return asset
        except IntegrityError:
            db.rollback()
            if retried:
                raise
            retried = True
            logger.info(f"Concurrent insert of {asset_type} asset for version {version_id}; updating instead")


def merge_json(existing: Optional[Dict[str, Any]], **updates: Any) -> Dict[str, Any]:
    """Copy of a JSON object column with keys set, or removed when None."""
    merged = dict(existing) if isinstance(existing, dict) else {}
    for key, value in updates.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def list_active_documents(db: Session, document_ids: Optional[List[uuid.UUID]] = None) -> List[Document]:
    """Documents that are not soft-deleted, optionally restricted to ids."""
    query = select(Document).where(Document.deleted_at.is_(None))
    if document_ids is not None:
        query = query.where(Document.id.in_(document_ids))
    return list(db.execute(query.order_by(Document.uploaded_at)).scalars())
