"""
Bounded history buffer.

Keeps an ordered window of turns together with a per-turn cost tally,
enforcing a turn-count ceiling and a cumulative cost ceiling. With a
summarizer and a summarize_after threshold configured, the older half of
the window is collapsed into a standing summary instead of being dropped
outright.

Invariants (held under the buffer lock):
  - len(_token_counts) == len(_turns)
  - sum(_token_counts) == _total_tokens
  - turns are only ever removed from the front
"""

import logging
import threading
from typing import Optional

from ..messages import Turn
from .base import Memory
from .config import MemoryConfig
from .summarizer import Summarizer

logger = logging.getLogger(__name__)

SUMMARY_PREFIX = "[Previous conversation summary]\n"


class BufferMemory(Memory):
    """
    In-memory conversation window with token and count limits.

    Usage:
        memory = BufferMemory(MemoryConfig(max_tokens=2000, max_messages=50))
        memory.add(Turn.user("Hello"))
        context = memory.get_messages(max_tokens=1000)
    """

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        summarizer: Optional[Summarizer] = None,
    ):
        self.config = config or MemoryConfig()
        self._summarizer = summarizer
        self._turns: list[Turn] = []
        self._token_counts: list[int] = []
        self._total_tokens = 0
        self._summary = ""
        self._lock = threading.RLock()

    def add(self, turn: Turn) -> None:
        """
        Append a turn, summarizing and trimming as configured.

        Never fails on a summarizer error: the failure is logged and
        ordinary trimming still applies.
        """
        tokens = self.config.token_counter(turn.content)

        with self._lock:
            self._turns.append(turn)
            self._token_counts.append(tokens)
            self._total_tokens += tokens

            threshold = self.config.summarize_after
            if (
                self._summarizer is not None
                and threshold > 0
                and len(self._turns) > threshold
            ):
                try:
                    self._summarize_older_half()
                except Exception as e:
                    logger.warning("Failed to summarize older turns: %s", e)

            self._trim_to_limits()

    def get_messages(self, max_tokens: int = 0) -> list[Turn]:
        """
        Return the newest turns that fit in max_tokens, oldest first.

        Walks backwards from the most recent turn and stops at the first
        turn that would overflow the budget. The standing summary, if any
        and if it fits, leads the result as a system turn.
        """
        if max_tokens <= 0:
            max_tokens = self.config.max_tokens

        with self._lock:
            result: list[Turn] = []
            used = 0

            if self._summary:
                # Costed without SUMMARY_PREFIX, so the budget is slightly understated
                summary_tokens = self.config.token_counter(self._summary)
                if max_tokens <= 0 or summary_tokens < max_tokens:
                    used += summary_tokens
                    summary_turn = Turn.system(SUMMARY_PREFIX + self._summary)
                else:
                    summary_turn = None
            else:
                summary_turn = None

            for turn, tokens in zip(reversed(self._turns), reversed(self._token_counts)):
                if max_tokens > 0 and used + tokens > max_tokens:
                    break
                result.append(turn)
                used += tokens

        result.reverse()
        if summary_turn is not None:
            result.insert(0, summary_turn)
        return result

    def get_relevant(self, query: str, top_k: int = 0) -> list[Turn]:
        """Relevance needs retrieval; the plain buffer returns its recent window."""
        return self.get_messages(self.config.max_tokens)

    def clear(self) -> None:
        with self._lock:
            self._turns = []
            self._token_counts = []
            self._total_tokens = 0
            self._summary = ""

    def count(self) -> int:
        with self._lock:
            return len(self._turns)

    def token_count(self) -> int:
        with self._lock:
            return self._total_tokens

    def summary(self) -> str:
        """The standing summary of turns evicted by summarization."""
        with self._lock:
            return self._summary

    def turns(self) -> list[Turn]:
        """A copy of every turn currently held."""
        with self._lock:
            return list(self._turns)

    def _drop_oldest(self, n: int) -> None:
        self._total_tokens -= sum(self._token_counts[:n])
        del self._turns[:n]
        del self._token_counts[:n]

    def _trim_to_limits(self) -> None:
        # Count ceiling first, then cost ceiling
        max_messages = self.config.max_messages
        if max_messages > 0 and len(self._turns) > max_messages:
            self._drop_oldest(len(self._turns) - max_messages)

        max_tokens = self.config.max_tokens
        if max_tokens <= 0:
            return
        while self._total_tokens > max_tokens and self._turns:
            self._drop_oldest(1)

    def _summarize_older_half(self) -> None:
        """Replace the older half of the window with a summary."""
        # Skip right after a previous summarization shrank the window
        if len(self._turns) <= self.config.summarize_after // 2:
            return

        split = len(self._turns) // 2
        older = self._turns[:split]

        summary = self._summarizer.summarize(older)

        if self._summary:
            self._summary = f"{self._summary}\n\n{summary}"
        else:
            self._summary = summary
        self._drop_oldest(split)

        logger.info("Summarized %d older turns, %d remain", split, len(self._turns))
