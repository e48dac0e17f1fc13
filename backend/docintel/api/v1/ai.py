"""
AI API — question answering and document AI processing

POST   /api/v1/ai/ask                        ask across the tenant's corpus
POST   /api/v1/ai/documents/{id}/ask         ask within one document
POST   /api/v1/ai/documents/{id}/uploaded    upload-completion hook → pending + schedule
POST   /api/v1/ai/documents/{id}/reprocess   explicit re-run of completed / failed
GET    /api/v1/ai/documents/{id}/status      processing state + AI metadata
DELETE /api/v1/ai/documents/{id}/chunks      remove a document's chunks
GET    /api/v1/ai/documents/{id}/summary     summary built from stored chunks
GET    /api/v1/ai/documents/{id}/extract-text stored (or freshly extracted) text
POST   /api/v1/ai/documents/{id}/classify    classify the stored text, persist the result
POST   /api/v1/ai/documents/{id}/summarize   summarize the stored text, persist the result
POST   /api/v1/ai/classify                   classify ad-hoc text
POST   /api/v1/ai/summarize                  summarize ad-hoc text
GET    /api/v1/ai/stats                      tenant chunk statistics
GET    /api/v1/ai/health                     provider connectivity + model info

Tenancy: the X-Tenant-ID header is set by the trusted gateway in front of
this service and is the ONLY source of the tenant id. It is never read
from a request body. Document routes answer 404 when the document belongs
to a different tenant; personal documents (no tenant) are managed without
the header.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, status

from docintel.core.errors import DocumentNotFoundError, ValidationError
from docintel.db.session import check_db_health
from docintel.rag.prompt_builder import ChatTurn
from docintel.rag.synthesizer import Answer
from docintel.schemas.ai import (
    AskRequest,
    AskResponse,
    ChunkDeleteResponse,
    ClassifyResponse,
    DocumentAskRequest,
    DocumentClassifyResponse,
    DocumentStatusResponse,
    DocumentSummarizeResponse,
    DocumentSummaryResponse,
    ExtractTextResponse,
    HealthResponse,
    ProcessingAcceptedResponse,
    SourceModel,
    StatsResponse,
    SummarizeResponse,
    TextRequest,
)
from docintel.services.container import AIServices
from docintel.services.documents import DocumentRecord

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["AI"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_services(request: Request) -> AIServices:
    return request.app.state.services


def _parse_tenant(raw: str | None) -> UUID | None:
    if raw is None or not raw.strip():
        return None
    try:
        return UUID(raw.strip())
    except ValueError:
        raise ValidationError(f"X-Tenant-ID is not a valid UUID: {raw!r}") from None


def get_optional_tenant(
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-ID")] = None,
) -> UUID | None:
    return _parse_tenant(x_tenant_id)


def require_tenant(
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-ID")] = None,
) -> UUID:
    tenant_id = _parse_tenant(x_tenant_id)
    if tenant_id is None:
        raise ValidationError("The X-Tenant-ID header is required")
    return tenant_id


Services       = Annotated[AIServices, Depends(get_services)]
TenantId       = Annotated[UUID, Depends(require_tenant)]
OptionalTenant = Annotated[UUID | None, Depends(get_optional_tenant)]


async def _load_owned(services: AIServices, document_id: UUID, tenant_id: UUID | None) -> DocumentRecord:
    record = await services.repository.get(document_id)
    if record.tenant_id != tenant_id:
        # Documents of other tenants answer as missing
        raise DocumentNotFoundError(document_id)
    return record


def _answer_response(answer: Answer) -> AskResponse:
    return AskResponse(
        answer=answer.answer,
        sources=[
            SourceModel(document_id=s.document_id, chunk_index=s.chunk_index, score=s.score)
            for s in answer.sources
        ],
        model=answer.model,
        prompt_tokens=answer.usage.prompt_tokens,
        completion_tokens=answer.usage.completion_tokens,
    )


def _history(body: AskRequest | DocumentAskRequest) -> list[ChatTurn]:
    return [ChatTurn(role=t.role, content=t.content) for t in body.history]


# ---------------------------------------------------------------------------
# Question answering
# ---------------------------------------------------------------------------

@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask a question across the tenant's documents",
)
async def ask(body: AskRequest, services: Services, tenant_id: TenantId) -> AskResponse:
    if body.document_id is not None:
        await _load_owned(services, body.document_id, tenant_id)

    answer = await services.synthesizer.answer(
        body.question,
        tenant_id,
        document_id=body.document_id,
        k=body.k,
        token_budget=body.token_budget,
        variant=body.variant,
        history=_history(body),
    )
    return _answer_response(answer)


@router.post(
    "/documents/{document_id}/ask",
    response_model=AskResponse,
    summary="Ask a question about one document",
)
async def ask_document(
    document_id: UUID,
    body:        DocumentAskRequest,
    services:    Services,
    tenant_id:   TenantId,
) -> AskResponse:
    await _load_owned(services, document_id, tenant_id)
    answer = await services.synthesizer.answer(
        body.question,
        tenant_id,
        document_id=document_id,
        k=body.k,
        token_budget=body.token_budget,
        variant=body.variant,
        history=_history(body),
    )
    return _answer_response(answer)


# ---------------------------------------------------------------------------
# Document processing lifecycle
# ---------------------------------------------------------------------------

@router.post(
    "/documents/{document_id}/uploaded",
    response_model=ProcessingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload completed: queue AI processing",
)
async def document_uploaded(
    document_id: UUID,
    services:    Services,
    tenant_id:   OptionalTenant,
) -> ProcessingAcceptedResponse:
    await _load_owned(services, document_id, tenant_id)
    record = await services.pipeline.on_upload_completed(document_id)
    return ProcessingAcceptedResponse(
        document_id=document_id,
        status=record.ai_processing_status,
        message="AI processing scheduled",
    )


@router.post(
    "/documents/{document_id}/reprocess",
    response_model=ProcessingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Re-run AI processing for a completed or failed document",
)
async def reprocess_document(
    document_id: UUID,
    services:    Services,
    tenant_id:   OptionalTenant,
) -> ProcessingAcceptedResponse:
    await _load_owned(services, document_id, tenant_id)
    record = await services.pipeline.reprocess(document_id)
    return ProcessingAcceptedResponse(
        document_id=document_id,
        status=record.ai_processing_status,
        message="AI reprocessing scheduled",
    )


@router.get(
    "/documents/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="AI processing state and outputs",
)
async def document_status(
    document_id: UUID,
    services:    Services,
    tenant_id:   OptionalTenant,
) -> DocumentStatusResponse:
    record = await _load_owned(services, document_id, tenant_id)
    return DocumentStatusResponse(
        document_id=record.id,
        filename=record.filename,
        mime_type=record.mime_type,
        status=record.ai_processing_status,
        error=record.ai_error,
        processed_at=record.ai_processed_at,
        category=record.ai_category,
        confidence=record.ai_confidence,
        tags=record.ai_tags,
        summary=record.ai_summary,
        key_points=record.ai_key_points,
        has_chunks=await services.pipeline.has_document_chunks(document_id),
    )


@router.delete(
    "/documents/{document_id}/chunks",
    response_model=ChunkDeleteResponse,
    summary="Delete all chunks of a document",
)
async def delete_document_chunks(
    document_id: UUID,
    services:    Services,
    tenant_id:   TenantId,
) -> ChunkDeleteResponse:
    await _load_owned(services, document_id, tenant_id)
    deleted = await services.pipeline.delete_document_chunks(document_id)
    logger.info("AI API | deleted chunks doc=%s tenant=%s count=%d", document_id, tenant_id, deleted)
    return ChunkDeleteResponse(document_id=document_id, deleted=deleted)


@router.get(
    "/documents/{document_id}/summary",
    response_model=DocumentSummaryResponse,
    summary="Summarize a document from its stored chunks",
)
async def document_summary(
    document_id: UUID,
    services:    Services,
    tenant_id:   TenantId,
) -> DocumentSummaryResponse:
    await _load_owned(services, document_id, tenant_id)
    answer = await services.synthesizer.summarize_document_chunks(document_id, tenant_id)
    return DocumentSummaryResponse(
        document_id=document_id,
        summary=answer.answer,
        sources=[
            SourceModel(document_id=s.document_id, chunk_index=s.chunk_index, score=s.score)
            for s in answer.sources
        ],
        model=answer.model,
    )


# ---------------------------------------------------------------------------
# On-demand AI over a stored document
# ---------------------------------------------------------------------------

@router.get(
    "/documents/{document_id}/extract-text",
    response_model=ExtractTextResponse,
    summary="Extracted text of a document",
)
async def extract_document_text(
    document_id: UUID,
    services:    Services,
    tenant_id:   OptionalTenant,
) -> ExtractTextResponse:
    await _load_owned(services, document_id, tenant_id)
    result = await services.pipeline.document_text(document_id)
    return ExtractTextResponse(
        document_id=document_id,
        text=result.text,
        char_count=result.char_count,
        word_count=result.word_count,
        page_count=result.page_count,
    )


@router.post(
    "/documents/{document_id}/classify",
    response_model=DocumentClassifyResponse,
    summary="Classify a document and store the result",
)
async def classify_document(
    document_id: UUID,
    services:    Services,
    tenant_id:   OptionalTenant,
) -> DocumentClassifyResponse:
    await _load_owned(services, document_id, tenant_id)
    result = await services.pipeline.classify_document(document_id)
    logger.info("AI API | classified doc=%s category=%s", document_id, result.category)
    return DocumentClassifyResponse(
        document_id=document_id,
        category=result.category,
        confidence=result.confidence,
        tags=result.tags,
    )


@router.post(
    "/documents/{document_id}/summarize",
    response_model=DocumentSummarizeResponse,
    summary="Summarize a document and store the result",
)
async def summarize_document(
    document_id: UUID,
    services:    Services,
    tenant_id:   OptionalTenant,
) -> DocumentSummarizeResponse:
    await _load_owned(services, document_id, tenant_id)
    result = await services.pipeline.summarize_document(document_id)
    return DocumentSummarizeResponse(
        document_id=document_id,
        summary=result.summary,
        key_points=result.key_points,
    )


# ---------------------------------------------------------------------------
# Ad-hoc classification / summarization
# ---------------------------------------------------------------------------

@router.post("/classify", response_model=ClassifyResponse, summary="Classify text")
async def classify_text(body: TextRequest, services: Services, tenant_id: TenantId) -> ClassifyResponse:
    result = await services.gateway.classify_document(body.text)
    return ClassifyResponse(category=result.category, confidence=result.confidence, tags=result.tags)


@router.post("/summarize", response_model=SummarizeResponse, summary="Summarize text")
async def summarize_text(body: TextRequest, services: Services, tenant_id: TenantId) -> SummarizeResponse:
    result = await services.gateway.summarize_document(body.text)
    return SummarizeResponse(summary=result.summary, key_points=result.key_points)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@router.get("/stats", response_model=StatsResponse, summary="Chunk statistics for the tenant")
async def stats(services: Services, tenant_id: TenantId) -> StatsResponse:
    result = await services.pipeline.statistics(tenant_id)
    return StatsResponse(
        tenant_id=tenant_id,
        total_chunks=result.total_chunks,
        total_documents=result.total_documents,
    )


@router.get("/health", response_model=HealthResponse, summary="Provider and database health")
async def health(services: Services) -> HealthResponse:
    connected = await services.gateway.check_connection()
    database  = (await check_db_health(services.engine))["status"]
    return HealthResponse(
        status="ok" if connected and database == "ok" else "degraded",
        provider=services.gateway.provider_name,
        provider_connected=connected,
        chat_model=services.gateway.chat_model,
        embedding_model=services.gateway.embedding_model,
        embedding_dimensions=services.gateway.embedding_dimensions,
        database=database,
    )
