"""SQLAlchemy ORM models."""

from papercrate.models.document import Document, DocumentAsset, DocumentVersion
from papercrate.models.job import Job

__all__ = [
    "Document",
    "DocumentVersion",
    "DocumentAsset",
    "Job",
]
