"""Job payload and response schemas."""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class DocumentJobPayload(BaseModel):
    """Payload identifying the document version a stage works on."""

    document_id: UUID
    document_version_id: UUID


class AnalyzePayload(DocumentJobPayload):
    """Input for the analyze stage."""

    force: bool = False


class ThumbnailPayload(DocumentJobPayload):
    """Input for the thumbnail stage."""

    force: bool = False


class OcrPayload(DocumentJobPayload):
    """Input for the OCR stage."""

    force: bool = False


class IndexPayload(DocumentJobPayload):
    """Input for the search indexing stage."""


class JobResponse(BaseModel):
    """Job row as exposed to operators."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: Dict[str, Any]
    status: str
    attempts: int
    run_after: datetime
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class JobStats(BaseModel):
    """Job counts by status."""

    queued: int
    processing: int
    succeeded: int
    failed: int
