"""Document, version and derived asset models."""

import uuid

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from papercrate.database import Base, JSONType, utcnow


class Document(Base):
    """Document metadata table."""

    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    content_type = Column(String(100))
    title = Column(Text, nullable=False)
    current_version_id = Column(Uuid, nullable=False)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    uploaded_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    deleted_at = Column(DateTime)

    # Relationships
    versions = relationship("DocumentVersion", back_populates="document", cascade="all, delete-orphan")


class DocumentVersion(Base):
    """One uploaded revision of a document's bytes."""

    __tablename__ = "document_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    version_number = Column(Integer, nullable=False)
    s3_key = Column(String(500), nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    checksum = Column(String(64), nullable=False, default="")
    operations_summary = Column(JSONType, nullable=False, default=dict)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    document = relationship("Document", back_populates="versions")
    assets = relationship("DocumentAsset", back_populates="version", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="document_versions_unique_version"),
        Index("idx_document_versions_document", "document_id"),
    )


class DocumentAsset(Base):
    """Derived artifact (thumbnail, preview, OCR text) of a document version."""

    __tablename__ = "document_assets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_version_id = Column(
        Uuid, ForeignKey("document_versions.id", ondelete="CASCADE"), nullable=False
    )
    asset_type = Column(Text, nullable=False)  # 'thumbnail', 'preview', 'ocr-text'
    s3_key = Column(Text, nullable=False)
    mime_type = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    version = relationship("DocumentVersion", back_populates="assets")

    __table_args__ = (
        UniqueConstraint("document_version_id", "asset_type", name="document_assets_unique"),
        Index("idx_document_assets_version", "document_version_id"),
    )
