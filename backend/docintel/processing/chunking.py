"""
Chunker  —  Deterministic Text Segmentation
═════════════════════════════════════════════

Splits extracted document text into ordered, bounded chunks that are
embedded independently for retrieval.

Strategy
────────
  1. Normalize (Unicode NFC, invisible chars, whitespace runs)
  2. Split into paragraphs at blank lines
  3. Paragraphs longer than max_words → sentences (spaCy sentencizer,
     regex split on [.!?] as fallback)
  4. Sentences longer than max_words  → fixed word windows
  5. Greedily pack pieces until target_words is reached, never past max_words
  6. Optionally prefix each chunk with the last overlap_words of its
     predecessor, so a fact split across a boundary is still retrievable
  7. A trailing chunk under min_words is folded into its predecessor when
     the merged chunk still fits in max_words

Sizes are counted in words (str.split), not model tokens, so chunking has
no tokenizer dependency and is identical across providers with the same
configuration.

Guarantees:
  - Pure and deterministic: same text + same ChunkConfig → same chunks.
    Reprocessing a document therefore reproduces its chunk set exactly.
  - Text of at most target_words words yields exactly one chunk.
  - Whitespace-only segments never become chunks.
  - Empty input raises ValidationError. It is never "successfully" chunked
    into zero segments.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from dataclasses import dataclass

from docintel.core.errors import ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Approximate characters per model token (OpenAI heuristic)
CHARS_PER_TOKEN = 4

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE  = re.compile(r"(?<=[.!?])\s+")


# ---------------------------------------------------------------------------
# spaCy sentencizer singleton
# ---------------------------------------------------------------------------

_spacy_nlp = None


def _get_nlp():
    """
    Build the rule-based sentencizer once per process (API worker or Celery
    worker). A blank multi-language pipeline needs no downloaded model.
    """
    global _spacy_nlp
    if _spacy_nlp is None:
        import spacy
        nlp = spacy.blank("xx")
        nlp.add_pipe("sentencizer")
        _spacy_nlp = nlp
        logger.info("Chunker | spaCy sentencizer loaded pipes=%s", nlp.pipe_names)
    return _spacy_nlp


def _split_sentences(text: str) -> list[str]:
    """Sentences of one paragraph, via spaCy or the regex fallback."""
    try:
        doc = _get_nlp()(text)
        return [sent.text.strip() for sent in doc.sents if sent.text.strip()]
    except Exception as exc:
        logger.warning("Chunker | spaCy sentence split failed error=%s, using regex", exc)

    return [s.strip() for s in _SENTENCE_RE.split(text) if s.strip()]


@dataclass(frozen=True)
class ChunkConfig:
    """Word-count bounds for one chunking run."""
    target_words:  int = 100
    min_words:     int = 50
    max_words:     int = 150
    overlap_words: int = 0

    def __post_init__(self) -> None:
        if not 0 < self.min_words <= self.target_words <= self.max_words:
            raise ValidationError(
                "ChunkConfig requires 0 < min_words <= target_words <= max_words, got "
                f"{self.min_words}/{self.target_words}/{self.max_words}"
            )
        if not 0 <= self.overlap_words < self.min_words:
            raise ValidationError(
                f"overlap_words must be in [0, min_words), got {self.overlap_words}"
            )


# Larger context windows (OpenAI) get larger chunks; small local models get
# smaller ones so several fit in the prompt.
PROVIDER_PRESETS: dict[str, ChunkConfig] = {
    "openai": ChunkConfig(target_words=300, min_words=100, max_words=450),
    "ollama": ChunkConfig(target_words=100, min_words=50,  max_words=150),
    "stub":   ChunkConfig(target_words=100, min_words=50,  max_words=150),
}


def chunk_config_for(
    provider:      str,
    target_words:  int = 0,
    min_words:     int = 0,
    max_words:     int = 0,
    overlap_words: int = 0,
) -> ChunkConfig:
    """
    Provider preset with optional overrides (0 = keep the preset value).
    """
    preset = PROVIDER_PRESETS.get(provider.lower(), PROVIDER_PRESETS["stub"])
    return ChunkConfig(
        target_words  = target_words or preset.target_words,
        min_words     = min_words or preset.min_words,
        max_words     = max_words or preset.max_words,
        overlap_words = overlap_words or preset.overlap_words,
    )


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextChunk:
    """One chunk ready for embedding."""
    index:          int    # 0-based ordering within the document
    text:           str
    word_count:     int
    char_count:     int
    token_estimate: int


@dataclass
class _Piece:
    text:   str
    words:  int
    joiner: str            # separator placed before this piece inside a chunk


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class Chunker:
    """
    Stateless chunker bound to one ChunkConfig.

    Usage:
        chunker = Chunker(chunk_config_for("openai"))
        chunks  = chunker.chunk(extracted_text)
    """

    def __init__(self, config: ChunkConfig | None = None) -> None:
        self._config = config or ChunkConfig()

    @property
    def config(self) -> ChunkConfig:
        return self._config

    def chunk(self, text: str) -> list[TextChunk]:
        """Segment `text` into ordered chunks (chunk index 0, 1, 2, ...)."""
        text = normalize_text(text or "")
        if not text:
            raise ValidationError("Cannot chunk empty text")

        if len(text.split()) <= self._config.target_words:
            texts = [text]
        else:
            texts = self._pack(self._split_pieces(text))

        chunks = [_make_chunk(i, t) for i, t in enumerate(texts)]
        logger.debug(
            "Chunker | chunks=%d avg_words=%.0f",
            len(chunks), sum(c.word_count for c in chunks) / max(1, len(chunks)),
        )
        return chunks

    # ------------------------------------------------------------------
    # Paragraph → sentence → word-window splitting
    # ------------------------------------------------------------------

    def _split_pieces(self, text: str) -> list[_Piece]:
        max_words = self._config.max_words
        pieces: list[_Piece] = []

        for para in _PARAGRAPH_RE.split(text):
            para = para.strip()
            if not para:
                continue

            n = len(para.split())
            if n <= max_words:
                pieces.append(_Piece(para, n, "\n\n"))
                continue

            # Long paragraph: sentences (then word windows) joined by spaces
            joiner = "\n\n"
            for sentence in _split_sentences(para):
                words = sentence.split()
                if len(words) <= max_words:
                    pieces.append(_Piece(sentence, len(words), joiner))
                else:
                    for window in _word_windows(words, max_words):
                        pieces.append(_Piece(" ".join(window), len(window), joiner))
                        joiner = " "
                joiner = " "

        return pieces

    # ------------------------------------------------------------------
    # Greedy packing with optional overlap
    # ------------------------------------------------------------------

    def _pack(self, pieces: list[_Piece]) -> list[str]:
        cfg = self._config

        chunks:      list[str] = []
        chunk_words: list[int] = []

        buf          = ""      # current chunk text, including any carried overlap
        buf_words    = 0
        own          = ""      # current chunk text WITHOUT the carried overlap
        own_words    = 0
        own_joiner   = "\n\n"  # joiner before the first own piece

        def flush() -> None:
            nonlocal buf, buf_words, own, own_words
            chunks.append(buf)
            chunk_words.append(buf_words)
            buf, buf_words, own, own_words = "", 0, "", 0

        for piece in pieces:
            if buf and buf_words + piece.words > cfg.max_words:
                flush()

            if not buf:
                own_joiner = piece.joiner
                carry = _tail_words(chunks[-1], cfg.overlap_words) if chunks else []
                if carry and len(carry) + piece.words <= cfg.max_words:
                    buf       = " ".join(carry) + piece.joiner + piece.text
                    buf_words = len(carry) + piece.words
                else:
                    buf       = piece.text
                    buf_words = piece.words
                own       = piece.text
                own_words = piece.words
            else:
                buf       += piece.joiner + piece.text
                buf_words += piece.words
                own       += piece.joiner + piece.text
                own_words += piece.words

            if buf_words >= cfg.target_words:
                flush()

        if buf:
            if (
                chunks
                and own_words < cfg.min_words
                and chunk_words[-1] + own_words <= cfg.max_words
            ):
                chunks[-1]      += own_joiner + own
                chunk_words[-1] += own_words
            else:
                flush()

        return chunks


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def estimate_tokens(text: str) -> int:
    """Approximate model tokens for `text`: ceil(chars / 4)."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def normalize_text(text: str) -> str:
    """
    Normalize Unicode, strip invisible characters, collapse excess whitespace.
    Preserves paragraph breaks (double newlines).
    """
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[\u00a0\u200b\u200c\u200d\ufeff]", " ", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    lines = [line.strip() for line in text.split("\n")]
    return "\n".join(lines).strip()


def _word_windows(words: list[str], size: int) -> list[list[str]]:
    return [words[i:i + size] for i in range(0, len(words), size)]


def _tail_words(text: str, count: int) -> list[str]:
    if count <= 0:
        return []
    return text.split()[-count:]


def _make_chunk(index: int, text: str) -> TextChunk:
    return TextChunk(
        index          = index,
        text           = text,
        word_count     = len(text.split()),
        char_count     = len(text),
        token_estimate = estimate_tokens(text),
    )
