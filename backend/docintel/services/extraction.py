"""
Text extraction collaborator.

The pipeline only depends on the TextExtractor protocol:

    extractor.supports(mime_type) -> bool
    await extractor.extract(document) -> ExtractionResult

LocalTextExtractor reads the stored file from `storage_root` and picks a
parser by MIME type:

  application/pdf    pypdf, page texts joined by blank lines
  .docx              python-docx, paragraph texts
  text/plain, md     UTF-8, falling back to latin-1

Parsing is CPU-bound and blocking, so it runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from docx import Document as DocxDocument
from pypdf import PdfReader

from docintel.core.errors import ValidationError
from docintel.services.documents import DocumentRecord

logger = logging.getLogger(__name__)

PDF_MIME  = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIMES = frozenset({"text/plain", "text/markdown", "text/x-markdown"})

SUPPORTED_MIME_TYPES = frozenset({PDF_MIME, DOCX_MIME}) | TEXT_MIMES


@dataclass(frozen=True)
class ExtractionResult:
    text:       str
    char_count: int
    word_count: int
    page_count: int = 1

    @classmethod
    def from_text(cls, text: str, page_count: int = 1) -> "ExtractionResult":
        return cls(
            text=text,
            char_count=len(text),
            word_count=len(text.split()),
            page_count=page_count,
        )


class TextExtractor(Protocol):
    def supports(self, mime_type: str) -> bool: ...

    async def extract(self, document: DocumentRecord) -> ExtractionResult: ...


# ---------------------------------------------------------------------------
# Parsers (blocking)
# ---------------------------------------------------------------------------

def _extract_pdf(data: bytes) -> ExtractionResult:
    reader = PdfReader(io.BytesIO(data))
    pages  = [(page.extract_text() or "").strip() for page in reader.pages]
    return ExtractionResult.from_text(
        "\n\n".join(p for p in pages if p), page_count=len(reader.pages),
    )


def _extract_docx(data: bytes) -> ExtractionResult:
    doc   = DocxDocument(io.BytesIO(data))
    paras = [p.text.strip() for p in doc.paragraphs if p.text and p.text.strip()]
    return ExtractionResult.from_text("\n\n".join(paras))


def _extract_plain(data: bytes) -> ExtractionResult:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    return ExtractionResult.from_text(text.lstrip("\ufeff"))


# ---------------------------------------------------------------------------
# Local filesystem extractor
# ---------------------------------------------------------------------------

class LocalTextExtractor:
    """
    Extract text from files stored under `storage_root`.

    Usage:
        extractor = LocalTextExtractor(settings.storage_root)
        if extractor.supports(doc.mime_type):
            result = await extractor.extract(doc)
    """

    def __init__(self, storage_root: str | Path) -> None:
        self._root = Path(storage_root).resolve()

    def supports(self, mime_type: str) -> bool:
        return _normalize_mime(mime_type) in SUPPORTED_MIME_TYPES

    async def extract(self, document: DocumentRecord) -> ExtractionResult:
        mime = _normalize_mime(document.mime_type)
        if mime not in SUPPORTED_MIME_TYPES:
            raise ValidationError(f"Unsupported MIME type for extraction: {document.mime_type}")

        path = self._resolve(document.storage_path)
        t0   = time.perf_counter()

        data = await asyncio.to_thread(path.read_bytes)
        if mime == PDF_MIME:
            result = await asyncio.to_thread(_extract_pdf, data)
        elif mime == DOCX_MIME:
            result = await asyncio.to_thread(_extract_docx, data)
        else:
            result = _extract_plain(data)

        logger.info(
            "Extraction | doc=%s mime=%s pages=%d chars=%d words=%d latency_ms=%.1f",
            document.id, mime, result.page_count, result.char_count, result.word_count,
            (time.perf_counter() - t0) * 1000,
        )
        return result

    def _resolve(self, storage_path: str) -> Path:
        path = (self._root / storage_path).resolve()
        if not path.is_relative_to(self._root):
            raise ValidationError(f"Storage path escapes the storage root: {storage_path}")
        return path


def _normalize_mime(mime_type: str) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()
