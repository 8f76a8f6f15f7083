"""
Vector-based conversation retriever.

Embeds conversation turns with a LangChain Embeddings model and stores
them in a VectorStore, enabling semantic recall of turns that have
already left the live context window.

Architecture:
  - add_message → embed turn content → Record(role on record) → store
  - retrieve    → embed query → top-k cosine search → similarity filter → Turns
  - build_context → retrieve → one delimited text block for prompt injection
"""

import logging
from typing import Optional, Sequence

from langchain_core.embeddings import Embeddings

from ..errors import EmbeddingError
from ..messages import Turn
from .config import RetrievalConfig
from .vector_store import InMemoryVectorStore, Record, SearchResult, VectorStore

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "[Relevant context from previous conversations]\n"
CONTEXT_SEPARATOR = "\n---\n"


class MemoryRetriever:
    """
    Stores and retrieves conversation turns by embedding similarity.

    Usage:
        retriever = MemoryRetriever(OpenAIEmbeddings())
        retriever.add_message(Turn.user("My name is Ada"), "msg_1")
        turns = retriever.retrieve("what is my name?")
    """

    def __init__(
        self,
        embeddings: Embeddings,
        store: Optional[VectorStore] = None,
        config: Optional[RetrievalConfig] = None,
    ):
        self._embeddings = embeddings
        self._store = store if store is not None else InMemoryVectorStore()
        self.config = config or RetrievalConfig()
        self._dimensions = 0

    @property
    def store(self) -> VectorStore:
        return self._store

    @property
    def embeddings(self) -> Embeddings:
        return self._embeddings

    def embedding_dimensions(self) -> int:
        """Output size of the embedder, declared or detected with a test embed."""
        if self._dimensions:
            return self._dimensions
        declared = getattr(self._embeddings, "dimensions", None)
        if isinstance(declared, int) and declared > 0:
            self._dimensions = declared
        else:
            self._dimensions = len(self._embed("test"))
        return self._dimensions

    def _embed(self, text: str) -> list[float]:
        try:
            return list(self._embeddings.embed_query(text))
        except Exception as e:
            raise EmbeddingError(f"embedding failed: {e}") from e

    def add_message(self, turn: Turn, record_id: str) -> None:
        """Embed a turn and store it under record_id."""
        vector = self._embed(turn.content)
        self._store.add(_make_record(turn, record_id, vector))

    def add_messages(self, turns: Sequence[Turn], record_ids: Sequence[str]) -> None:
        """Embed and store several turns with one batch embedding call."""
        if len(turns) != len(record_ids):
            raise ValueError("turns and record_ids must have the same length")
        if not turns:
            return
        try:
            vectors = self._embeddings.embed_documents([t.content for t in turns])
        except Exception as e:
            raise EmbeddingError(f"batch embedding failed: {e}") from e

        self._store.add_batch([
            _make_record(turn, record_id, list(vector))
            for turn, record_id, vector in zip(turns, record_ids, vectors)
        ])

    def search(self, query: str, top_k: Optional[int] = None) -> list[SearchResult]:
        """Return stored records similar to query, above the similarity threshold."""
        vector = self._embed(query)
        results = self._store.search(vector, top_k or self.config.top_k)
        return [r for r in results if r.similarity >= self.config.min_similarity]

    def retrieve(self, query: str, top_k: Optional[int] = None) -> list[Turn]:
        """Return the turns most relevant to query, most similar first."""
        return [
            Turn(result.record.resolved_role(), result.record.content)
            for result in self.search(query, top_k)
        ]

    def build_context(self, query: str) -> str:
        """
        Build a text block of relevant earlier turns for prompt injection.

        Returns an empty string when nothing passes the similarity
        threshold. Entries stop being added once the block would exceed
        the configured max_tokens.
        """
        turns = self.retrieve(query)
        if not turns:
            return ""

        count_tokens = self.config.token_counter
        budget = self.config.max_tokens
        context = CONTEXT_HEADER
        used = count_tokens(context)

        for turn in turns:
            if self.config.include_metadata:
                entry = f"{turn.role.value}: {turn.content}{CONTEXT_SEPARATOR}"
            else:
                entry = f"{turn.content}{CONTEXT_SEPARATOR}"
            entry_tokens = count_tokens(entry)
            if budget > 0 and used + entry_tokens > budget:
                logger.debug("Context budget reached after %d chars", len(context))
                break
            context += entry
            used += entry_tokens

        if context == CONTEXT_HEADER:
            return ""
        return context


def _make_record(turn: Turn, record_id: str, vector: list[float]) -> Record:
    return Record(
        id=record_id,
        content=turn.content,
        vector=vector,
        role=turn.role,
        metadata={"role": turn.role.value},
    )
