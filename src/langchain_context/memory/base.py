"""
The memory interface shared by the bounded buffer and the
retrieval-augmented buffer.
"""

from abc import ABC, abstractmethod

from ..messages import Turn


class Memory(ABC):
    """Conversation memory that assembles context within a token budget."""

    @abstractmethod
    def add(self, turn: Turn) -> None:
        """Store a turn."""

    @abstractmethod
    def get_messages(self, max_tokens: int = 0) -> list[Turn]:
        """Return the most recent turns that fit in max_tokens (<= 0 = configured default)."""

    @abstractmethod
    def get_relevant(self, query: str, top_k: int = 0) -> list[Turn]:
        """Return turns relevant to query."""

    @abstractmethod
    def clear(self) -> None:
        """Drop everything held by this memory."""

    @abstractmethod
    def count(self) -> int:
        """Number of turns held."""

    @abstractmethod
    def token_count(self) -> int:
        """Total estimated cost of the turns held."""
