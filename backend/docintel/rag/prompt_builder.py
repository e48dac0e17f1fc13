"""
Prompt Builder — grounded RAG prompts

Every RAG variant enumerates the retrieved chunks as labelled fragments:

    [Fragment 1]
    <chunk text>

    ---

    [Fragment 2]
    <chunk text>

and appends the literal user question. Fragment numbers follow retrieval
priority (best match first), so "[Fragment 1]" in an answer points at the
strongest source and maps 1:1 onto Answer.sources.

Variants:
  FULL            complete instruction block (default)
  SIMPLE          terse; relies on DEFAULT_SYSTEM_MESSAGE for the rules
  CONVERSATIONAL  FULL-style context plus recent chat history
  SUMMARIZATION   summarize the fragments about a topic

Token budgeting is approximate (ceil(chars / 4)); it decides how many
fragments fit, not what the provider bills.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Final

from docintel.core.errors import ValidationError
from docintel.processing.chunking import CHARS_PER_TOKEN, estimate_tokens

logger = logging.getLogger(__name__)

TRUNCATION_MARKER: Final[str] = "..."

# A partial fragment is only worth including with at least this much room
MIN_PARTIAL_TOKENS: Final[int] = 50

# Conversational prompts keep only the most recent turns
MAX_HISTORY_TURNS: Final[int] = 5

FRAGMENT_SEPARATOR: Final[str] = "\n\n---\n\n"

DEFAULT_SYSTEM_MESSAGE: Final[str] = (
    "You are an assistant that answers questions about an organization's documents. "
    "Answer only from the document fragments provided in the prompt. If they do not "
    "contain the answer, say so explicitly. Cite fragment numbers, e.g. [Fragment 2]."
)

_FULL_TEMPLATE: Final[str] = """\
You are an AI assistant that answers questions using ONLY the context provided below.

Analyze the following document fragments and answer the user's question accurately.

IMPORTANT INSTRUCTIONS:
1. Use only the information contained in the context fragments
2. If the answer is not in the context, state clearly that there is not enough information
3. Do not invent information or use outside knowledge
4. Cite the fragment number when relevant (e.g. "According to Fragment 2...")
5. Be concise but complete
6. If fragments contradict each other, point it out

CONTEXT:
{context}

USER QUESTION:
{question}

ANSWER:"""

_CONVERSATIONAL_TEMPLATE: Final[str] = """\
You are an assistant that answers questions based on the documents provided.
Use only the context fragments; if they do not contain the answer, say so explicitly.
Cite fragment numbers when relevant.
{history}
UPDATED CONTEXT:
{context}

NEW QUESTION:
{question}

Answer based on the context and the previous conversation:"""


class PromptVariant(str, Enum):
    FULL           = "full"
    SIMPLE         = "simple"
    CONVERSATIONAL = "conversational"
    SUMMARIZATION  = "summarization"


@dataclass(frozen=True)
class ChatTurn:
    role:    str    # "user" | "assistant"
    content: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_question(question: str) -> str:
    if not question or not question.strip():
        raise ValidationError("Question must not be empty")
    return question.strip()


def _clean_chunks(chunks: list[str]) -> list[str]:
    if not chunks:
        raise ValidationError("At least one context chunk is required")
    cleaned = [c.strip() for c in chunks if c and c.strip()]
    if not cleaned:
        raise ValidationError("No non-empty context chunks provided")
    return cleaned


def format_fragments(chunks: list[str]) -> str:
    """Number chunks as [Fragment N] blocks joined by a rule."""
    return FRAGMENT_SEPARATOR.join(
        f"[Fragment {i}]\n{chunk}" for i, chunk in enumerate(_clean_chunks(chunks), start=1)
    )


# ---------------------------------------------------------------------------
# Prompt variants
# ---------------------------------------------------------------------------

def build_prompt(question: str, chunks: list[str]) -> str:
    """FULL variant: the complete grounded-answer instruction block."""
    return _FULL_TEMPLATE.format(
        context=format_fragments(chunks),
        question=_require_question(question),
    )


def build_simple_prompt(question: str, chunks: list[str]) -> str:
    """SIMPLE variant: context + question; rules come from the system message."""
    question = _require_question(question)
    return f"{format_fragments(chunks)}\n\nQuestion: {question}\n\nAnswer using only the fragments above:"


def build_conversational_prompt(
    question: str,
    chunks:   list[str],
    history:  list[ChatTurn] | None = None,
) -> str:
    """CONVERSATIONAL variant: FULL-style grounding plus recent history."""
    question = _require_question(question)
    turns    = [t for t in (history or []) if t.content and t.content.strip()][-MAX_HISTORY_TURNS:]

    history_section = ""
    if turns:
        lines = "\n\n".join(
            f"{'User' if t.role == 'user' else 'Assistant'}: {t.content.strip()}" for t in turns
        )
        history_section = f"\nCONVERSATION HISTORY:\n{lines}\n"

    return _CONVERSATIONAL_TEMPLATE.format(
        history=history_section,
        context=format_fragments(chunks),
        question=question,
    )


def build_summarization_prompt(topic: str, chunks: list[str]) -> str:
    """SUMMARIZATION variant: summarize the fragments about `topic`."""
    if not topic or not topic.strip():
        raise ValidationError("Topic must not be empty")
    return (
        f"Summarize the following information about: {topic.strip()}\n\n"
        f"CONTENT:\n{format_fragments(chunks)}\n\n"
        "Provide a clear, concise summary that captures the main points:"
    )


def render(
    variant:  PromptVariant,
    question: str,
    chunks:   list[str],
    history:  list[ChatTurn] | None = None,
) -> str:
    """Dispatch to the builder for `variant`."""
    if variant is PromptVariant.FULL:
        return build_prompt(question, chunks)
    if variant is PromptVariant.SIMPLE:
        return build_simple_prompt(question, chunks)
    if variant is PromptVariant.CONVERSATIONAL:
        return build_conversational_prompt(question, chunks, history)
    if variant is PromptVariant.SUMMARIZATION:
        return build_summarization_prompt(question, chunks)
    raise ValidationError(f"Unknown prompt variant: {variant}")   # pragma: no cover


# ---------------------------------------------------------------------------
# Token budgeting
# ---------------------------------------------------------------------------

def truncate_context(chunks: list[str], max_tokens: int) -> list[str]:
    """
    Fit `chunks` (highest priority first) into `max_tokens`.

    Whole chunks are kept in order while they fit. The first chunk that does
    not fit is cut down and ends with TRUNCATION_MARKER when more than
    MIN_PARTIAL_TOKENS remain; every lower-priority chunk is dropped.
    The result is always a prefix of the input, with only its last element
    possibly shortened.
    """
    if max_tokens <= 0:
        raise ValidationError(f"Token budget must be positive, got {max_tokens}")
    if not chunks:
        raise ValidationError("At least one context chunk is required")

    kept: list[str] = []
    used = 0

    for chunk in chunks:
        cost = estimate_tokens(chunk)
        if used + cost <= max_tokens:
            kept.append(chunk)
            used += cost
            continue

        remaining = max_tokens - used
        if remaining > MIN_PARTIAL_TOKENS:
            keep_chars = remaining * CHARS_PER_TOKEN - len(TRUNCATION_MARKER)
            kept.append(chunk[:keep_chars].rstrip() + TRUNCATION_MARKER)
        break

    if len(kept) < len(chunks):
        logger.debug(
            "PromptBuilder | truncated context chunks_in=%d chunks_out=%d budget=%d",
            len(chunks), len(kept), max_tokens,
        )
    return kept
