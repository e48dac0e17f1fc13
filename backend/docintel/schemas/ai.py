"""
Pydantic schemas for the AI API (/api/v1/ai).

Request models validate shape and bounds; domain rules (empty question
after stripping, token budget, transitions) are enforced by the services
and surface through the ErrorResponse envelope.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from docintel.models.processing import ProcessingState
from docintel.rag.prompt_builder import PromptVariant


# ---------------------------------------------------------------------------
# Question answering
# ---------------------------------------------------------------------------

class ChatTurnModel(BaseModel):
    role:    Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=8_000)


class _AskFields(BaseModel):
    question: str = Field(
        ...,
        min_length=1,
        max_length=2_000,
        description="The user's natural-language question.",
        examples=["What is AI?"],
    )
    k: int | None = Field(
        default=None,
        ge=1,
        le=20,
        description="Number of chunks to retrieve (default depends on the provider).",
    )
    token_budget: int | None = Field(
        default=None,
        ge=1,
        le=100_000,
        description="Approximate token budget for the prompt context.",
    )
    variant: PromptVariant = Field(default=PromptVariant.FULL)
    history: list[ChatTurnModel] = Field(
        default_factory=list,
        max_length=50,
        description="Previous turns; only the most recent ones are used (conversational variant).",
    )


class AskRequest(_AskFields):
    """Ask across the tenant's corpus, optionally scoped to one document."""
    document_id: UUID | None = None


class DocumentAskRequest(_AskFields):
    """Ask within the document named in the path."""


class SourceModel(BaseModel):
    document_id: UUID
    chunk_index: int
    score:       float


class AskResponse(BaseModel):
    answer:            str
    sources:           list[SourceModel]
    model:             str | None
    prompt_tokens:     int = 0
    completion_tokens: int = 0


# ---------------------------------------------------------------------------
# Document processing
# ---------------------------------------------------------------------------

class ProcessingAcceptedResponse(BaseModel):
    """Returned by the upload-completed and reprocess hooks (202)."""
    document_id: UUID
    status:      ProcessingState
    message:     str


class DocumentStatusResponse(BaseModel):
    document_id:  UUID
    filename:     str
    mime_type:    str
    status:       ProcessingState
    error:        str | None
    processed_at: datetime | None
    category:     str | None
    confidence:   float | None
    tags:         list[str]
    summary:      str | None
    key_points:   list[str]
    has_chunks:   bool


class ChunkDeleteResponse(BaseModel):
    document_id: UUID
    deleted:     int


class DocumentSummaryResponse(BaseModel):
    document_id: UUID
    summary:     str
    sources:     list[SourceModel]
    model:       str | None


# ---------------------------------------------------------------------------
# Ad-hoc classification / summarization
# ---------------------------------------------------------------------------

class TextRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=200_000)


class ClassifyResponse(BaseModel):
    category:   str
    confidence: float = Field(..., ge=0.0, le=1.0)
    tags:       list[str]


class SummarizeResponse(BaseModel):
    summary:    str
    key_points: list[str]


class DocumentClassifyResponse(ClassifyResponse):
    """Classification of a stored document; category, confidence and tags are persisted."""
    document_id: UUID


class DocumentSummarizeResponse(SummarizeResponse):
    """Summary of a stored document; summary and key points are persisted."""
    document_id: UUID


class ExtractTextResponse(BaseModel):
    document_id: UUID
    text:        str
    char_count:  int
    word_count:  int
    page_count:  int


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

class StatsResponse(BaseModel):
    tenant_id:       UUID
    total_chunks:    int
    total_documents: int


class HealthResponse(BaseModel):
    status:               Literal["ok", "degraded"]
    provider:             str
    provider_connected:   bool
    chat_model:           str
    embedding_model:      str
    embedding_dimensions: int
    database:             str


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
