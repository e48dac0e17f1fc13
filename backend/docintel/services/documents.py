"""
Document repository — the AI pipeline's view of the documents table.

The pipeline never holds ORM objects across steps. Every step reads or
writes through this repository in its own short transaction, so each
step's output is durable as soon as the step finishes:

    repo.claim(doc_id, {PENDING}, PROCESSING)     conditional UPDATE
    repo.update_fields(doc_id, ai_category=...)   one step's output
    repo.set_state(doc_id, COMPLETED, PIPELINE)   table-checked move

claim() is the only way into `processing`. It is a single
UPDATE ... WHERE ai_processing_status IN (...) statement, so of two
concurrent runs on the same document exactly one sees rowcount == 1.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docintel.core.errors import DocumentNotFoundError, InvalidTransitionError, ValidationError
from docintel.db.session import transaction
from docintel.models.documents import Document
from docintel.models.processing import (
    ProcessingState,
    TransitionTrigger,
    ensure_transition,
)

logger = logging.getLogger(__name__)

# Columns the pipeline may write through update_fields()
UPDATABLE_FIELDS = frozenset({
    "ai_error",
    "ai_processed_at",
    "ai_category",
    "ai_confidence",
    "ai_tags",
    "ai_summary",
    "ai_key_points",
    "extracted_text",
})


@dataclass
class DocumentRecord:
    """Detached snapshot of a document row (extracted_text excluded)."""
    id:                   uuid.UUID
    tenant_id:            uuid.UUID | None
    filename:             str
    mime_type:            str
    storage_path:         str
    ai_processing_status: ProcessingState
    ai_error:             str | None      = None
    ai_processed_at:      datetime | None = None
    ai_category:          str | None      = None
    ai_confidence:        float | None    = None
    ai_tags:              list[str]       = field(default_factory=list)
    ai_summary:           str | None      = None
    ai_key_points:        list[str]       = field(default_factory=list)
    created_at:           datetime | None = None
    updated_at:           datetime | None = None


def _to_record(row: Document) -> DocumentRecord:
    return DocumentRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        filename=row.filename,
        mime_type=row.mime_type,
        storage_path=row.storage_path,
        ai_processing_status=row.ai_processing_status,
        ai_error=row.ai_error,
        ai_processed_at=row.ai_processed_at,
        ai_category=row.ai_category,
        ai_confidence=row.ai_confidence,
        ai_tags=list(row.ai_tags or []),
        ai_summary=row.ai_summary,
        ai_key_points=list(row.ai_key_points or []),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class DocumentRepository(ABC):

    @abstractmethod
    async def create(
        self,
        filename:     str,
        mime_type:    str,
        storage_path: str,
        tenant_id:    uuid.UUID | None = None,
    ) -> DocumentRecord: ...

    @abstractmethod
    async def get(self, document_id: uuid.UUID) -> DocumentRecord:
        """Raise DocumentNotFoundError for unknown ids."""

    @abstractmethod
    async def get_extracted_text(self, document_id: uuid.UUID) -> str | None: ...

    @abstractmethod
    async def update_fields(self, document_id: uuid.UUID, **fields: Any) -> None: ...

    @abstractmethod
    async def claim(
        self,
        document_id: uuid.UUID,
        expected:    Iterable[ProcessingState],
        new_state:   ProcessingState,
        **fields:    Any,
    ) -> bool:
        """Atomically move to `new_state` iff the current state is in `expected`."""

    @abstractmethod
    async def set_state(
        self,
        document_id: uuid.UUID,
        target:      ProcessingState,
        trigger:     TransitionTrigger,
        **fields:    Any,
    ) -> DocumentRecord:
        """Apply a transition-table-checked state change plus `fields`."""

    @abstractmethod
    async def list_by_state(self, state: ProcessingState, limit: int) -> list[uuid.UUID]:
        """Oldest-first ids of documents in `state`."""


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

class SQLDocumentRepository(DocumentRepository):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        filename:     str,
        mime_type:    str,
        storage_path: str,
        tenant_id:    uuid.UUID | None = None,
    ) -> DocumentRecord:
        row = Document(
            tenant_id=tenant_id,
            filename=filename,
            mime_type=mime_type,
            storage_path=storage_path,
            ai_processing_status=ProcessingState.NONE,
            ai_tags=[],
            ai_key_points=[],
        )
        async with transaction(self._session_factory) as session:
            session.add(row)
        return _to_record(row)

    async def get(self, document_id: uuid.UUID) -> DocumentRecord:
        async with self._session_factory() as session:
            row = await session.get(Document, document_id)
            if row is None:
                raise DocumentNotFoundError(document_id)
            return _to_record(row)

    async def get_extracted_text(self, document_id: uuid.UUID) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.extracted_text).where(Document.id == document_id)
            )
            row = result.first()
        if row is None:
            raise DocumentNotFoundError(document_id)
        return row[0]

    async def update_fields(self, document_id: uuid.UUID, **fields: Any) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not updatable by the pipeline: {sorted(unknown)}")
        if not fields:
            return

        async with transaction(self._session_factory) as session:
            result = await session.execute(
                update(Document).where(Document.id == document_id).values(**fields)
            )
        if not result.rowcount:
            raise DocumentNotFoundError(document_id)

    async def claim(
        self,
        document_id: uuid.UUID,
        expected:    Iterable[ProcessingState],
        new_state:   ProcessingState,
        **fields:    Any,
    ) -> bool:
        expected = list(expected)
        async with transaction(self._session_factory) as session:
            result = await session.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.ai_processing_status.in_(expected),
                )
                .values(ai_processing_status=new_state, **fields)
            )
        claimed = bool(result.rowcount)
        logger.debug(
            "DocumentRepository | claim doc=%s expected=%s new=%s claimed=%s",
            document_id, [s.value for s in expected], new_state.value, claimed,
        )
        return claimed

    async def set_state(
        self,
        document_id: uuid.UUID,
        target:      ProcessingState,
        trigger:     TransitionTrigger,
        **fields:    Any,
    ) -> DocumentRecord:
        current = (await self.get(document_id)).ai_processing_status
        ensure_transition(current, target, trigger)

        # Conditional on the state we validated against: a concurrent change
        # between the read and this write makes the transition invalid.
        if not await self.claim(document_id, [current], target, **fields):
            latest = (await self.get(document_id)).ai_processing_status
            raise InvalidTransitionError(latest.value, target.value)

        logger.info(
            "DocumentRepository | doc=%s %s -> %s trigger=%s",
            document_id, current.value, target.value, trigger.value,
        )
        return await self.get(document_id)

    async def list_by_state(self, state: ProcessingState, limit: int) -> list[uuid.UUID]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Document.id)
                .where(Document.ai_processing_status == state)
                .order_by(Document.created_at, Document.id)
                .limit(limit)
            )
            return list(result.scalars().all())
