"""
Chat session configuration.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from .memory.summarizer import Summarizer
from .memory.token_budget import TokenCounter, estimate_tokens


@dataclass
class AutocompactConfig:
    """Automatic compaction: summarize older turns once history reaches threshold."""

    # History length that triggers compaction
    threshold: int = 20

    # Most recent turns kept verbatim
    keep_recent: int = 4

    # None = ask the session's own request handler for a summary
    summarizer: Optional[Summarizer] = None

    def __post_init__(self):
        if self.threshold <= 0:
            raise ValueError("autocompact threshold must be positive")
        if self.keep_recent < 0:
            raise ValueError("autocompact keep_recent must not be negative")


@dataclass
class SessionConfig:
    """Configuration for a ChatSession."""

    # Maximum turns kept in history (0 = unlimited)
    history_limit: int = 100

    # Token ceiling for history (0 = disabled)
    max_tokens: int = 0
    token_counter: TokenCounter = estimate_tokens

    autocompact: Optional[AutocompactConfig] = None

    # Generation defaults copied into every request
    model: str = ""
    temperature: float = 0.0
    max_output_tokens: int = 0
    stop: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Load configuration from environment variables."""
        autocompact = None
        threshold = int(os.getenv("SESSION_AUTOCOMPACT_THRESHOLD", "0"))
        if threshold > 0:
            autocompact = AutocompactConfig(
                threshold=threshold,
                keep_recent=int(os.getenv("SESSION_AUTOCOMPACT_KEEP_RECENT", "4")),
            )
        return cls(
            history_limit=int(os.getenv("SESSION_HISTORY_LIMIT", "100")),
            max_tokens=int(os.getenv("SESSION_MAX_TOKENS", "0")),
            autocompact=autocompact,
            model=os.getenv("SESSION_MODEL", ""),
            temperature=float(os.getenv("SESSION_TEMPERATURE", "0")),
            max_output_tokens=int(os.getenv("SESSION_MAX_OUTPUT_TOKENS", "0")),
        )
