"""
SQLAlchemy ORM Models — Documents & Document Chunks

Using SQLAlchemy 2.x mapped classes for full async support. Column types
are the portable generics (Uuid, JSON, DateTime) so the same models run on
PostgreSQL (asyncpg) in production and SQLite (aiosqlite) in tests.

Only the AI-facing columns of a document live here; file storage,
ownership and sharing belong to the document-management service.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from docintel.models.processing import ProcessingState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    An uploaded file and the output of its AI pipeline.

    ai_processing_status follows docintel.models.processing.ProcessingState;
    it is mutated only through DocumentRepository by the pipeline and the
    upload / reprocess hooks.

    extracted_text is deferred: it can be megabytes, so ordinary loads
    (status pages, listings) never pull it.
    """

    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_tenant_id", "tenant_id"),
        Index("idx_documents_ai_status", "ai_processing_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Owning organization; NULL = personal document (never enters the vector corpus)
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    filename:     Mapped[str] = mapped_column(Text, nullable=False)
    mime_type:    Mapped[str] = mapped_column(Text, nullable=False)
    storage_path: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Path of the stored file, relative to the storage root",
    )

    # --- AI pipeline state ---------------------------------------------------
    ai_processing_status: Mapped[ProcessingState] = mapped_column(
        Enum(
            ProcessingState,
            name="ai_processing_status",
            native_enum=False,
            values_callable=lambda states: [s.value for s in states],
            validate_strings=True,
        ),
        nullable=False,
        default=ProcessingState.NONE,
    )
    ai_error:        Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    ai_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- AI outputs ------------------------------------------------------------
    ai_category:   Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    ai_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    ai_tags:       Mapped[list]            = mapped_column(JSON, nullable=False, default=list)
    ai_summary:    Mapped[Optional[str]]   = mapped_column(Text, nullable=True)
    ai_key_points: Mapped[list]            = mapped_column(JSON, nullable=False, default=list)

    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True, deferred=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} tenant={self.tenant_id} "
            f"ai_status={self.ai_processing_status} file={self.filename!r}>"
        )


# ---------------------------------------------------------------------------
# DocumentChunk model: document_chunks
# ---------------------------------------------------------------------------

class DocumentChunk(Base):
    """
    One embedded chunk of a document's extracted text.

    Rows are immutable: reprocessing deletes and re-inserts the whole set.
    tenant_id is copied from the parent document at insert time and is the
    column every similarity search filters on.
    """

    __tablename__ = "document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_position"),
        Index("idx_document_chunks_tenant_id",   "tenant_id"),
        Index("idx_document_chunks_document_id", "document_id"),
    )

    id:          Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    tenant_id:   Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    chunk_index: Mapped[int]       = mapped_column(Integer, nullable=False)
    content:     Mapped[str]       = mapped_column(Text, nullable=False)
    embedding:   Mapped[list]      = mapped_column(JSON, nullable=False)
    created_at:  Mapped[datetime]  = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<DocumentChunk doc={self.document_id} tenant={self.tenant_id} "
            f"index={self.chunk_index}>"
        )
