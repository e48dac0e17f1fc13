"""
RAG package — retrieval, prompt building and answer synthesis.

  retriever.py       tenant-scoped nearest-neighbour search
  prompt_builder.py  [Fragment N] prompts and token-budget truncation
  synthesizer.py     retrieve → truncate → prompt → chat → Answer
"""

from docintel.rag.prompt_builder import ChatTurn, PromptVariant, truncate_context
from docintel.rag.retriever import RetrievedMatch, TenantScopedRetriever
from docintel.rag.synthesizer import Answer, AnswerSynthesizer, SourceRef

__all__ = [
    "Answer",
    "AnswerSynthesizer",
    "ChatTurn",
    "PromptVariant",
    "RetrievedMatch",
    "SourceRef",
    "TenantScopedRetriever",
    "truncate_context",
]
