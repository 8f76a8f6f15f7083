"""
In-process vector store for conversation recall.

Records are (id, content, vector) tuples with the turn's role stored
directly on the record. Search is an exhaustive cosine-similarity scan:
O(n) per query and per insert, which is fine for a single conversation's
history but is not meant to back a large corpus.

Tie-break policy: results with equal similarity keep insertion order
(the sort is stable), so earlier records rank first.
"""

import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

import numpy as np

from ..messages import Role

logger = logging.getLogger(__name__)


@dataclass
class Record:
    """A stored text with its embedding."""

    id: str
    content: str
    vector: list[float]
    role: Optional[Role] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def resolved_role(self) -> Role:
        """The record's role: typed field first, then metadata, then user."""
        if isinstance(self.role, Role):
            return self.role
        return Role.parse(self.metadata.get("role"))


@dataclass(frozen=True)
class SearchResult:
    """A record paired with its similarity to the query."""

    record: Record
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude, the dimensions
    differ, or the result is not finite.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb) / (norm_a * norm_b))
    if not math.isfinite(similarity):
        return 0.0
    return similarity


class VectorStore(ABC):
    """Stores records and finds them by vector similarity."""

    @abstractmethod
    def add(self, record: Record) -> None:
        """Insert a record, replacing any record with the same id."""

    def add_batch(self, records: Sequence[Record]) -> None:
        for record in records:
            self.add(record)

    @abstractmethod
    def search(self, query_vector: Sequence[float], top_k: int) -> list[SearchResult]:
        """Return up to top_k records, most similar first."""

    @abstractmethod
    def delete(self, record_id: str) -> None:
        """Remove a record; unknown ids are ignored."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every record."""

    @abstractmethod
    def count(self) -> int:
        """Number of records stored."""


class InMemoryVectorStore(VectorStore):
    """Exhaustive in-memory vector store."""

    def __init__(self):
        self._records: list[Record] = []
        self._lock = threading.RLock()

    def add(self, record: Record) -> None:
        record = _copy_record(record)
        with self._lock:
            for i, existing in enumerate(self._records):
                if existing.id == record.id:
                    self._records[i] = record
                    return
            self._records.append(record)

    def get(self, record_id: str) -> Optional[Record]:
        with self._lock:
            for record in self._records:
                if record.id == record_id:
                    return _copy_record(record)
        return None

    def search(self, query_vector: Sequence[float], top_k: int) -> list[SearchResult]:
        if top_k <= 0:
            return []

        with self._lock:
            scored = [
                SearchResult(
                    record=_copy_record(record),
                    similarity=cosine_similarity(query_vector, record.vector),
                )
                for record in self._records
            ]

        # Stable sort: equal similarities keep insertion order
        scored.sort(key=lambda r: r.similarity, reverse=True)
        return scored[:top_k]

    def delete(self, record_id: str) -> None:
        with self._lock:
            self._records = [r for r in self._records if r.id != record_id]

    def clear(self) -> None:
        with self._lock:
            self._records = []
        logger.debug("Vector store cleared")

    def count(self) -> int:
        with self._lock:
            return len(self._records)


def _copy_record(record: Record) -> Record:
    return replace(record, vector=list(record.vector), metadata=dict(record.metadata))
