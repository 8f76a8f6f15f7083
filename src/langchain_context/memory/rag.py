"""
Retrieval-augmented memory.

Combines the bounded history buffer with a MemoryRetriever: every turn
is kept in the bounded window and also indexed for similarity search, so
turns evicted from the window stay recallable.

The dual write is not transactional. If indexing fails the turn is still
in the window; conversational continuity wins over retrieval
completeness.
"""

import logging
import threading
from typing import Optional

from langchain_core.embeddings import Embeddings

from ..errors import MemoryClearError
from ..messages import Turn
from .base import Memory
from .buffer import BufferMemory
from .config import RAGMemoryConfig
from .retriever import MemoryRetriever
from .summarizer import Summarizer
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

# Turns whose content shares this many leading characters are treated as
# the same turn when merging recent and retrieved results. Two different
# long turns with a common prefix collapse into one (known limitation).
DEDUP_PREFIX_CHARS = 100


def _dedup_key(turn: Turn) -> str:
    return turn.content[:DEDUP_PREFIX_CHARS]


class RAGMemory(Memory):
    """
    Bounded recent window plus similarity recall over the full history.

    Usage:
        memory = RAGMemory(MemoryRetriever(embeddings))
        memory.add(Turn.user("The deploy key lives in vault"))
        context = memory.get_relevant("where is the deploy key?")
    """

    def __init__(
        self,
        retriever: MemoryRetriever,
        config: Optional[RAGMemoryConfig] = None,
        summarizer: Optional[Summarizer] = None,
    ):
        if config is None:
            config = RAGMemoryConfig(retrieval=retriever.config)
        else:
            # Retrieval settings of the memory config govern the retriever
            retriever.config = config.retrieval
        self.config = config
        self._buffer = BufferMemory(self.config.memory, summarizer)
        self._retriever = retriever
        self._message_id = 0
        self._id_lock = threading.Lock()

    @classmethod
    def from_embeddings(
        cls,
        embeddings: Embeddings,
        config: Optional[RAGMemoryConfig] = None,
        store: Optional[VectorStore] = None,
        summarizer: Optional[Summarizer] = None,
    ) -> "RAGMemory":
        """Build the retriever from embeddings and the retrieval part of config."""
        config = config or RAGMemoryConfig()
        retriever = MemoryRetriever(embeddings, store=store, config=config.retrieval)
        return cls(retriever, config, summarizer)

    @property
    def retriever(self) -> MemoryRetriever:
        return self._retriever

    def _next_id(self) -> str:
        with self._id_lock:
            self._message_id += 1
            return f"msg_{self._message_id}"

    def add(self, turn: Turn) -> None:
        """Add to the bounded window, then index for retrieval (best effort)."""
        self._buffer.add(turn)

        record_id = self._next_id()
        try:
            self._retriever.add_message(turn, record_id)
        except Exception as e:
            logger.warning("Failed to index turn %s for retrieval: %s", record_id, e)

    def get_messages(self, max_tokens: int = 0) -> list[Turn]:
        return self._buffer.get_messages(max_tokens)

    def get_relevant(self, query: str, top_k: int = 0) -> list[Turn]:
        """
        Merge the recent window with turns retrieved for query.

        Recent turns (at half the configured budget) come first, then
        retrieved turns not already present. Falls back to the recent
        turns alone when retrieval fails.
        """
        recent = self._buffer.get_messages(self.config.memory.max_tokens // 2)

        try:
            relevant = self._retriever.retrieve(query, top_k if top_k > 0 else None)
        except Exception as e:
            logger.warning("Retrieval failed, using recent turns only: %s", e)
            return recent

        seen: set[str] = set()
        merged: list[Turn] = []
        for turn in [*recent, *relevant]:
            key = _dedup_key(turn)
            if key in seen:
                continue
            seen.add(key)
            merged.append(turn)
        return merged

    def clear(self) -> None:
        """Clear the window and the retrieval index; raises MemoryClearError on failure."""
        try:
            self._buffer.clear()
        except Exception as e:
            raise MemoryClearError(f"failed to clear history buffer: {e}") from e
        try:
            self._retriever.store.clear()
        except Exception as e:
            raise MemoryClearError(f"failed to clear retrieval store: {e}") from e

    def count(self) -> int:
        return self._buffer.count()

    def token_count(self) -> int:
        return self._buffer.token_count()

    def summary(self) -> str:
        return self._buffer.summary()

    def indexed_count(self) -> int:
        """Number of turns held by the retrieval index."""
        return self._retriever.store.count()
