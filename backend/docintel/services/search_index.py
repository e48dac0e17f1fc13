"""
Full-text search index collaborator.

After classification and summarization the pipeline hands the document's
text and AI metadata to a SearchIndexer so keyword search reflects the
latest category, tags and summary.

  HttpSearchIndexer  PUT {url}/{index}/_doc/{id}  (Elasticsearch / OpenSearch API)
  NullSearchIndexer  no search service configured; logs and returns
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from docintel.services.documents import DocumentRecord

logger = logging.getLogger(__name__)


class SearchIndexer(Protocol):
    async def index_document(self, document: DocumentRecord, text: str) -> None: ...

    async def aclose(self) -> None: ...


def build_index_body(document: DocumentRecord, text: str) -> dict:
    return {
        "document_id": str(document.id),
        "tenant_id":   str(document.tenant_id) if document.tenant_id else None,
        "filename":    document.filename,
        "mime_type":   document.mime_type,
        "content":     text,
        "category":    document.ai_category,
        "tags":        list(document.ai_tags),
        "summary":     document.ai_summary,
        "key_points":  list(document.ai_key_points),
    }


class HttpSearchIndexer:
    """Indexes documents through the Elasticsearch-compatible document API."""

    def __init__(
        self,
        base_url:   str,
        index_name: str = "documents",
        timeout:    float = 10.0,
        client:     httpx.AsyncClient | None = None,
    ) -> None:
        self._index  = index_name
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)

    async def index_document(self, document: DocumentRecord, text: str) -> None:
        response = await self._client.put(
            f"/{self._index}/_doc/{document.id}",
            json=build_index_body(document, text),
        )
        # A failed index call fails the step; the pipeline records it as ai_error
        response.raise_for_status()
        logger.info(
            "SearchIndexer | indexed doc=%s index=%s status=%d",
            document.id, self._index, response.status_code,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class NullSearchIndexer:

    async def index_document(self, document: DocumentRecord, text: str) -> None:
        logger.debug("SearchIndexer | no index configured, skipping doc=%s", document.id)

    async def aclose(self) -> None:
        return None
