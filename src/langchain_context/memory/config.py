"""
Memory and retrieval configuration.
"""

import os
from dataclasses import dataclass, field

from .token_budget import TokenCounter, estimate_tokens

DEFAULT_TOP_K = 5


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class MemoryConfig:
    """Configuration for the bounded history buffer."""

    # Cost ceiling for stored turns (<= 0 disables the ceiling)
    max_tokens: int = 4000

    # Turn-count ceiling (0 = unlimited)
    max_messages: int = 100

    # Summarize the older half once this many turns are held (0 = disabled)
    summarize_after: int = 0

    token_counter: TokenCounter = estimate_tokens

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Load configuration from environment variables."""
        return cls(
            max_tokens=int(os.getenv("MEMORY_MAX_TOKENS", "4000")),
            max_messages=int(os.getenv("MEMORY_MAX_MESSAGES", "100")),
            summarize_after=int(os.getenv("MEMORY_SUMMARIZE_AFTER", "0")),
        )


@dataclass
class RetrievalConfig:
    """Configuration for similarity retrieval."""

    top_k: int = DEFAULT_TOP_K
    min_similarity: float = 0.7

    # Budget for build_context output
    max_tokens: int = 2000

    # Prefix each retrieved entry with its role in build_context
    include_metadata: bool = False

    token_counter: TokenCounter = estimate_tokens

    def __post_init__(self):
        if self.top_k <= 0:
            self.top_k = DEFAULT_TOP_K

    @classmethod
    def from_env(cls) -> "RetrievalConfig":
        """Load configuration from environment variables."""
        return cls(
            top_k=int(os.getenv("RETRIEVAL_TOP_K", str(DEFAULT_TOP_K))),
            min_similarity=float(os.getenv("RETRIEVAL_MIN_SIMILARITY", "0.7")),
            max_tokens=int(os.getenv("RETRIEVAL_MAX_TOKENS", "2000")),
            include_metadata=_env_bool("RETRIEVAL_INCLUDE_METADATA", "false"),
        )


@dataclass
class RAGMemoryConfig:
    """Configuration for the retrieval-augmented buffer."""

    memory: MemoryConfig = field(default_factory=MemoryConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)

    @classmethod
    def from_env(cls) -> "RAGMemoryConfig":
        return cls(
            memory=MemoryConfig.from_env(),
            retrieval=RetrievalConfig.from_env(),
        )
