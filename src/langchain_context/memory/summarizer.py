"""
Conversation summarizers.

Collapse a list of turns into a short text that stands in for them once
they are evicted from the live window. Two implementations share the
Summarizer contract:

- ConversationSummarizer asks a language model (through any request
  handler) for a brief summary.
- TruncatingSummarizer builds a deterministic excerpt without a model,
  for tests and offline use.
"""

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

from ..errors import SummarizationError
from ..messages import CompletionRequest, CompletionResponse, Turn

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = """Summarize the following conversation concisely, preserving:
- Key facts and information shared
- Important decisions or conclusions
- Relevant context for future messages
Keep the summary brief (2-4 sentences). Do not include meta-commentary."""

EXCERPT_CHARS = 100


class Summarizer(ABC):
    """Compresses turns into a summary text."""

    @abstractmethod
    def summarize(self, turns: list[Turn]) -> str:
        """Return a summary of turns. Raises SummarizationError on failure."""


class ConversationSummarizer(Summarizer):
    """Summarizes conversations with a language model."""

    def __init__(
        self,
        handler: Callable[[CompletionRequest], CompletionResponse],
        model: str = "",
        max_tokens: int = 500,
        temperature: float = 0.3,
    ):
        self._handler = handler
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    @classmethod
    def from_chat_model(cls, llm: "BaseChatModel", **kwargs) -> "ConversationSummarizer":
        """Build a summarizer on top of a LangChain chat model."""
        from ..handlers import chat_model_handler

        return cls(chat_model_handler(llm), **kwargs)

    def summarize(self, turns: list[Turn]) -> str:
        if not turns:
            return ""

        conversation_text = "".join(f"{turn}\n" for turn in turns)
        request = CompletionRequest(
            messages=[Turn.user(conversation_text)],
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            model=self.model,
            max_tokens=self.max_tokens,
            # Low temperature for consistent summaries
            temperature=self.temperature,
        )

        try:
            response = self._handler(request)
        except Exception as e:
            raise SummarizationError(f"summarization failed: {e}") from e

        logger.debug("Summarized %d turns into %d chars", len(turns), len(response.content))
        return response.content


class TruncatingSummarizer(Summarizer):
    """Builds a summary by excerpting each turn, without a model."""

    def __init__(self, max_length: int = 500):
        if max_length <= 0:
            max_length = 500
        self.max_length = max_length

    def summarize(self, turns: list[Turn]) -> str:
        if not turns:
            return ""

        result = "[Conversation excerpt] "
        for turn in turns:
            if len(result) >= self.max_length:
                break
            excerpt = turn.content
            if len(excerpt) > EXCERPT_CHARS:
                excerpt = excerpt[:EXCERPT_CHARS] + "..."
            result += f"{turn.role.value}: {excerpt} | "

        if len(result) > self.max_length:
            result = result[: self.max_length] + "..."
        return result
