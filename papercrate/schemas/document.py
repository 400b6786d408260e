"""Document-related Pydantic schemas."""

from typing import List
from uuid import UUID

from pydantic import BaseModel


class ReanalyzeSelectionRequest(BaseModel):
    """Schema for reanalyzing a chosen set of documents."""

    document_ids: List[UUID]
    force: bool = False


class ReanalyzeResponse(BaseModel):
    """Response after enqueueing analyze jobs."""

    queued: int
