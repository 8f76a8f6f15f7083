"""
Conversation memory with retrieval-augmented recall.

Provides the building blocks a chat session uses to decide which part of
a conversation goes into each completion request:

- BufferMemory: bounded window of recent turns with count and token
  limits, optionally collapsing its older half into a standing summary
- RAGMemory: the bounded window plus a similarity index over every turn,
  merging "always recent" and "topically relevant" turns on recall
- MemoryRetriever / InMemoryVectorStore: embedding-based search over
  stored turns
- ConversationSummarizer / TruncatingSummarizer: model-driven and
  deterministic summarization
"""

from .base import Memory
from .buffer import BufferMemory
from .config import MemoryConfig, RAGMemoryConfig, RetrievalConfig
from .rag import RAGMemory
from .retriever import MemoryRetriever
from .summarizer import ConversationSummarizer, Summarizer, TruncatingSummarizer
from .token_budget import TokenCounter, estimate_tokens, estimate_turn_tokens
from .vector_store import (
    InMemoryVectorStore,
    Record,
    SearchResult,
    VectorStore,
    cosine_similarity,
)

__all__ = [
    "Memory",
    "BufferMemory",
    "RAGMemory",
    "MemoryConfig",
    "RAGMemoryConfig",
    "RetrievalConfig",
    "MemoryRetriever",
    "Summarizer",
    "ConversationSummarizer",
    "TruncatingSummarizer",
    "TokenCounter",
    "estimate_tokens",
    "estimate_turn_tokens",
    "VectorStore",
    "InMemoryVectorStore",
    "Record",
    "SearchResult",
    "cosine_similarity",
]
