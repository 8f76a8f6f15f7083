"""
Token estimation for context budgeting.

Costs are approximate: every limit in this package is expressed in the
units of a pluggable token counter, by default a character heuristic.
"""

from typing import Callable, Iterable

from ..messages import Turn

# A token counter maps text to an approximate cost.
TokenCounter = Callable[[str], int]

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 chars per token."""
    if not text:
        return 0
    return len(text) // CHARS_PER_TOKEN


def estimate_turn_tokens(
    turns: Iterable[Turn],
    counter: TokenCounter = estimate_tokens,
) -> int:
    """Estimate the total cost of a sequence of turns."""
    return sum(counter(turn.content) for turn in turns)
