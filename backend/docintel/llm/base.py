"""
AI Provider — Abstract Base

Every concrete backend (OpenAI, Ollama, deterministic stub) implements this
interface. The rest of the application only speaks this protocol, via the
ProviderGateway, so backends are swappable without touching chunking,
retrieval or the pipeline.

Provider contract (enforced by ALL implementations):
  - generate_embeddings() returns exactly one vector per input, in order.
  - Vector length equals embedding_dimensions. Never padded, never truncated.
  - Failures raise ProviderError with a kind; nothing returns a placeholder.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from docintel.core.errors import ProviderErrorKind

logger = logging.getLogger(__name__)

# Categories offered to LLM classifiers; the stub uses a subset.
DOCUMENT_CATEGORIES: tuple[str, ...] = (
    "Invoice",
    "Contract",
    "Report",
    "Manual",
    "Policy",
    "Presentation",
    "Spreadsheet",
    "Letter",
    "Form",
    "Other",
)

FALLBACK_CATEGORY = "Other"

CLASSIFY_INPUT_CHARS  = 2000
SUMMARIZE_INPUT_CHARS = 4000


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class EmbeddingResult:
    """One embedding vector and the model that produced it."""
    embedding:  list[float]
    dimensions: int
    model:      str


@dataclass
class TokenUsage:
    prompt_tokens:     int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ChatOptions:
    """Per-call generation options; None means "provider default"."""
    temperature:    float | None = None
    max_tokens:     int | None   = None
    system_message: str | None   = None
    model:          str | None   = None


@dataclass
class ChatResponse:
    content: str
    model:   str
    usage:   TokenUsage = field(default_factory=TokenUsage)


@dataclass
class ClassificationResult:
    category:   str
    confidence: float            # clamped to [0, 1]
    tags:       list[str] = field(default_factory=list)


@dataclass
class SummaryResult:
    summary:    str
    key_points: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class AIProvider(ABC):
    """Capability set every AI backend exposes."""

    name: str = "base"

    @property
    @abstractmethod
    def embedding_dimensions(self) -> int:
        """Length of every vector this provider returns."""

    @property
    @abstractmethod
    def embedding_model(self) -> str: ...

    @property
    @abstractmethod
    def chat_model(self) -> str: ...

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Embed a single text."""

    @abstractmethod
    async def generate_embeddings(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed a batch in ONE backend call where the backend supports it."""

    @abstractmethod
    async def generate_chat_response(
        self,
        prompt:  str,
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        """Single-turn completion."""

    @abstractmethod
    async def classify_document(self, text: str) -> ClassificationResult: ...

    @abstractmethod
    async def summarize_document(self, text: str) -> SummaryResult: ...

    @abstractmethod
    async def check_connection(self) -> bool:
        """True when the backend answers; never raises."""

    async def aclose(self) -> None:
        """Release network clients. Default: nothing to release."""


# ---------------------------------------------------------------------------
# Prompt templates shared by the LLM-backed providers
# ---------------------------------------------------------------------------

def build_classification_prompt(text: str) -> str:
    return (
        "Analyze the following document and classify it.\n\n"
        f"Possible categories: {', '.join(DOCUMENT_CATEGORIES)}\n\n"
        f"Document text (first {CLASSIFY_INPUT_CHARS} characters):\n"
        f"{text[:CLASSIFY_INPUT_CHARS]}\n\n"
        "Respond ONLY with a valid JSON object (no markdown, no explanations):\n"
        '{\n  "category": "category_name",\n  "confidence": 0.95,\n'
        '  "tags": ["tag1", "tag2", "tag3"]\n}'
    )


def build_summary_prompt(text: str) -> str:
    return (
        "Summarize the following document in 2-3 sentences and extract the "
        "3-5 most important key points.\n\n"
        f"Document text (first {SUMMARIZE_INPUT_CHARS} characters):\n"
        f"{text[:SUMMARIZE_INPUT_CHARS]}\n\n"
        "Respond ONLY with a valid JSON object (no markdown, no explanations):\n"
        '{\n  "summary": "2-3 sentence summary",\n'
        '  "keyPoints": ["point1", "point2", "point3"]\n}'
    )


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def strip_code_fences(raw: str) -> str:
    """Remove a surrounding ```json ... ``` fence that chat models like to add."""
    return _FENCE_RE.sub("", raw.strip()).strip()


def parse_json_object(raw: str) -> dict | None:
    """Parse a JSON object from a model reply; None when it is not one."""
    try:
        parsed = json.loads(strip_code_fences(raw))
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def parse_classification(raw: str, provider: str) -> ClassificationResult:
    parsed = parse_json_object(raw)
    if parsed is None:
        logger.warning("Classification unparseable | provider=%s reply=%.200r", provider, raw)
        return ClassificationResult(category=FALLBACK_CATEGORY, confidence=0.3, tags=[])

    category   = parsed.get("category")
    confidence = parsed.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.5

    return ClassificationResult(
        category   = category.strip() if isinstance(category, str) and category.strip() else FALLBACK_CATEGORY,
        confidence = min(1.0, max(0.0, float(confidence))),
        tags       = _string_list(parsed.get("tags")),
    )


def parse_summary(raw: str, provider: str) -> SummaryResult:
    parsed = parse_json_object(raw)
    if parsed is None:
        logger.warning("Summary unparseable | provider=%s reply=%.200r", provider, raw)
        return SummaryResult(summary=raw.strip(), key_points=[])

    summary = parsed.get("summary")
    return SummaryResult(
        summary    = summary.strip() if isinstance(summary, str) else "",
        key_points = _string_list(parsed.get("keyPoints", parsed.get("key_points"))),
    )


# ---------------------------------------------------------------------------
# HTTP status → error kind (shared by OpenAI and Ollama mappers)
# ---------------------------------------------------------------------------

def kind_for_status(status_code: int, message: str = "") -> ProviderErrorKind:
    lowered = message.lower()
    if status_code in (401, 403):
        return ProviderErrorKind.AUTH
    if status_code == 402 or "quota" in lowered:
        return ProviderErrorKind.QUOTA
    if status_code == 413:
        return ProviderErrorKind.PAYLOAD_TOO_LARGE
    if status_code == 429:
        return ProviderErrorKind.RATE_LIMIT
    return ProviderErrorKind.UNAVAILABLE
