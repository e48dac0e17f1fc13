"""
Document Processing Package
════════════════════════════

Text → chunks → embedded chunk records, the compute half of the document
pipeline:

Modules
───────
  chunking.py    Deterministic word-bounded chunker with optional overlap
  embeddings.py  Batch embedding of chunks through the ProviderGateway

Design principles
─────────────────
  • Every component is stateless and dependency-injected.
  • Chunking is pure; embedding is all-or-nothing per document.
  • Every produced record carries its document's tenant_id.
"""

from docintel.processing.chunking import (
    ChunkConfig,
    Chunker,
    TextChunk,
    chunk_config_for,
    estimate_tokens,
)
from docintel.processing.embeddings import ChunkEmbedder

__all__ = [
    "ChunkConfig",
    "ChunkEmbedder",
    "Chunker",
    "TextChunk",
    "chunk_config_for",
    "estimate_tokens",
]
