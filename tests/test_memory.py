"""
Tests for the bounded history buffer, summarizers and memory configuration.
"""

import threading

import pytest
from unittest.mock import MagicMock
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from langchain_context.errors import SummarizationError
from langchain_context.messages import CompletionResponse, Role, Turn
from langchain_context.memory.buffer import SUMMARY_PREFIX, BufferMemory
from langchain_context.memory.config import (
    MemoryConfig,
    RAGMemoryConfig,
    RetrievalConfig,
)
from langchain_context.memory.summarizer import (
    SUMMARY_SYSTEM_PROMPT,
    ConversationSummarizer,
    TruncatingSummarizer,
)
from langchain_context.memory.token_budget import (
    estimate_tokens,
    estimate_turn_tokens,
)

from conftest import ten_tokens


def _turns(count: int) -> list[Turn]:
    """Alternating user/assistant turns."""
    turns = []
    for i in range(count):
        if i % 2 == 0:
            turns.append(Turn.user(f"User message {i}"))
        else:
            turns.append(Turn.assistant(f"AI response {i}"))
    return turns


def _length_counter(text: str) -> int:
    return len(text)


# ── Config Tests ──


class TestMemoryConfig:
    def test_default_values(self):
        config = MemoryConfig()
        assert config.max_tokens == 4000
        assert config.max_messages == 100
        assert config.summarize_after == 0
        assert config.token_counter is estimate_tokens

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MEMORY_MAX_TOKENS", "500")
        monkeypatch.setenv("MEMORY_MAX_MESSAGES", "20")
        monkeypatch.setenv("MEMORY_SUMMARIZE_AFTER", "10")
        config = MemoryConfig.from_env()
        assert config.max_tokens == 500
        assert config.max_messages == 20
        assert config.summarize_after == 10

    def test_retrieval_defaults(self):
        config = RetrievalConfig()
        assert config.top_k == 5
        assert config.min_similarity == 0.7
        assert config.max_tokens == 2000
        assert config.include_metadata is False

    def test_retrieval_top_k_normalised(self):
        assert RetrievalConfig(top_k=0).top_k == 5
        assert RetrievalConfig(top_k=-3).top_k == 5

    def test_retrieval_from_env(self, monkeypatch):
        monkeypatch.setenv("RETRIEVAL_TOP_K", "3")
        monkeypatch.setenv("RETRIEVAL_MIN_SIMILARITY", "0.5")
        monkeypatch.setenv("RETRIEVAL_INCLUDE_METADATA", "yes")
        config = RetrievalConfig.from_env()
        assert config.top_k == 3
        assert config.min_similarity == 0.5
        assert config.include_metadata is True

    def test_rag_config_composes(self, monkeypatch):
        monkeypatch.setenv("MEMORY_MAX_TOKENS", "800")
        monkeypatch.setenv("RETRIEVAL_TOP_K", "2")
        config = RAGMemoryConfig.from_env()
        assert config.memory.max_tokens == 800
        assert config.retrieval.top_k == 2


# ── Token Budget Tests ──


class TestTokenBudget:
    def test_estimate_tokens_empty(self):
        assert estimate_tokens("") == 0

    def test_estimate_tokens_chars_over_four(self):
        assert estimate_tokens("x" * 40) == 10
        assert estimate_tokens("abc") == 0

    def test_estimate_turn_tokens(self):
        turns = [Turn.user("x" * 8), Turn.assistant("y" * 12)]
        assert estimate_turn_tokens(turns) == 5
        assert estimate_turn_tokens(turns, ten_tokens) == 20


# ── Buffer Tests ──


class TestBufferMemory:
    def test_count_limit_applies_before_token_limit(self):
        memory = BufferMemory(
            MemoryConfig(max_messages=3, max_tokens=1000, token_counter=ten_tokens)
        )
        turns = _turns(5)
        for turn in turns:
            memory.add(turn)
        assert memory.count() == 3
        assert memory.token_count() == 30
        assert memory.turns() == turns[2:]

    def test_token_limit_only(self):
        memory = BufferMemory(
            MemoryConfig(max_messages=0, max_tokens=25, token_counter=ten_tokens)
        )
        turns = _turns(3)
        for turn in turns:
            memory.add(turn)
        assert memory.count() == 2
        assert memory.token_count() == 20
        assert memory.turns() == turns[1:]

    def test_token_limit_can_empty_buffer(self):
        memory = BufferMemory(
            MemoryConfig(max_tokens=5, token_counter=ten_tokens)
        )
        memory.add(Turn.user("too big"))
        assert memory.count() == 0
        assert memory.token_count() == 0

    def test_non_positive_token_limit_disables_ceiling(self):
        memory = BufferMemory(
            MemoryConfig(max_messages=0, max_tokens=0, token_counter=ten_tokens)
        )
        for turn in _turns(50):
            memory.add(turn)
        assert memory.count() == 50
        assert memory.token_count() == 500
        assert len(memory.get_messages()) == 50

    def test_get_messages_respects_budget(self):
        memory = BufferMemory(
            MemoryConfig(max_messages=0, max_tokens=10_000, token_counter=_length_counter)
        )
        turns = [Turn.user("a" * n) for n in (7, 3, 12, 5, 9, 1, 4)]
        for turn in turns:
            memory.add(turn)

        for budget in range(1, 45):
            result = memory.get_messages(budget)
            assert sum(len(t.content) for t in result) <= budget
            # Always a suffix of the history
            assert result == turns[len(turns) - len(result):]

    def test_get_messages_stops_at_first_overflow(self):
        memory = BufferMemory(
            MemoryConfig(max_tokens=10_000, token_counter=_length_counter)
        )
        memory.add(Turn.user("a" * 2))
        memory.add(Turn.user("b" * 50))
        memory.add(Turn.user("c" * 10))
        # The old cheap turn is not swapped in past the expensive one
        assert memory.get_messages(20) == [Turn.user("c" * 10)]

    def test_get_messages_empty_when_newest_too_large(self):
        memory = BufferMemory(
            MemoryConfig(max_tokens=10_000, token_counter=_length_counter)
        )
        memory.add(Turn.user("x" * 100))
        assert memory.get_messages(50) == []

    def test_get_messages_default_budget(self):
        memory = BufferMemory(
            MemoryConfig(max_messages=0, max_tokens=30, token_counter=ten_tokens)
        )
        for turn in _turns(3):
            memory.add(turn)
        assert len(memory.get_messages(0)) == 3
        assert len(memory.get_messages(-1)) == 3
        assert len(memory.get_messages(15)) == 1

    def test_get_messages_returns_copy(self):
        memory = BufferMemory()
        memory.add(Turn.user("Hello there, this is long enough"))
        result = memory.get_messages()
        result.clear()
        assert memory.count() == 1

    def test_get_relevant_ignores_query(self):
        memory = BufferMemory(MemoryConfig(token_counter=ten_tokens))
        turns = _turns(4)
        for turn in turns:
            memory.add(turn)
        assert memory.get_relevant("anything", top_k=1) == turns

    def test_clear(self):
        summarizer = MagicMock()
        summarizer.summarize.return_value = "summary"
        memory = BufferMemory(
            MemoryConfig(summarize_after=2, token_counter=ten_tokens), summarizer
        )
        for turn in _turns(5):
            memory.add(turn)
        assert memory.summary() != ""

        memory.clear()
        memory.clear()
        assert memory.count() == 0
        assert memory.token_count() == 0
        assert memory.summary() == ""
        assert memory.get_messages() == []
        assert memory.get_messages(1) == []

    def test_concurrent_adds_stay_consistent(self):
        memory = BufferMemory(
            MemoryConfig(max_messages=25, max_tokens=10_000, token_counter=ten_tokens)
        )

        def worker(n):
            for i in range(50):
                memory.add(Turn.user(f"worker {n} turn {i}"))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert memory.count() == 25
        assert memory.token_count() == 250


class TestBufferSummarization:
    def _memory(self, summarize_after, summarizer, **kwargs):
        config = MemoryConfig(
            summarize_after=summarize_after,
            token_counter=ten_tokens,
            **kwargs,
        )
        return BufferMemory(config, summarizer)

    def test_older_half_summarized(self):
        summarizer = MagicMock()
        summarizer.summarize.return_value = "first summary"
        memory = self._memory(4, summarizer)
        turns = _turns(5)
        for turn in turns:
            memory.add(turn)

        summarizer.summarize.assert_called_once_with(turns[:2])
        assert memory.turns() == turns[2:]
        assert memory.token_count() == 30
        assert memory.summary() == "first summary"

    def test_summary_costed_without_prefix(self):
        summarizer = MagicMock()
        summarizer.summarize.return_value = "abc"
        memory = BufferMemory(
            MemoryConfig(max_tokens=0, summarize_after=2, token_counter=len), summarizer
        )
        for content in ("1", "2", "3"):
            memory.add(Turn.user(content))

        # "abc" costs 3, the two turns 1 each: exactly 5
        result = memory.get_messages(5)
        assert result == [
            Turn.system(SUMMARY_PREFIX + "abc"),
            Turn.user("2"),
            Turn.user("3"),
        ]

    def test_summaries_accumulate(self):
        summarizer = MagicMock()
        summarizer.summarize.side_effect = ["s1", "s2"]
        memory = self._memory(4, summarizer)
        for turn in _turns(7):
            memory.add(turn)

        assert summarizer.summarize.call_count == 2
        assert memory.summary() == "s1\n\ns2"
        assert memory.count() == 3

    def test_summary_leads_get_messages(self):
        summarizer = MagicMock()
        summarizer.summarize.return_value = "earlier talk"
        memory = self._memory(4, summarizer, max_tokens=1000)
        for turn in _turns(5):
            memory.add(turn)

        result = memory.get_messages()
        assert result[0].role is Role.SYSTEM
        assert result[0].content == SUMMARY_PREFIX + "earlier talk"
        assert len(result) == 4

    def test_summary_skipped_when_over_budget(self):
        summarizer = MagicMock()
        summarizer.summarize.return_value = "earlier talk"
        memory = self._memory(4, summarizer, max_tokens=1000)
        for turn in _turns(5):
            memory.add(turn)

        # ten_tokens charges the summary 10, not below a budget of 10
        result = memory.get_messages(10)
        assert all(t.role is not Role.SYSTEM for t in result)
        assert len(result) == 1

    def test_summarizer_failure_falls_back_to_trimming(self):
        summarizer = MagicMock()
        summarizer.summarize.side_effect = SummarizationError("model down")
        memory = self._memory(2, summarizer, max_messages=4)
        turns = _turns(6)
        for turn in turns:
            memory.add(turn)

        assert memory.summary() == ""
        assert memory.turns() == turns[2:]

    def test_small_threshold_summarizes_single_turns(self):
        summarizer = MagicMock()
        summarizer.summarize.return_value = "s"
        memory = self._memory(1, summarizer)
        turns = _turns(4)
        for turn in turns:
            memory.add(turn)

        assert summarizer.summarize.call_count == 3
        assert memory.turns() == turns[3:]
        assert memory.summary() == "s\n\ns\n\ns"

    def test_no_summarizer_no_summary(self):
        memory = self._memory(2, None, max_messages=3)
        for turn in _turns(6):
            memory.add(turn)
        assert memory.summary() == ""
        assert memory.count() == 3


# ── Summarizer Tests ──


class TestConversationSummarizer:
    def test_summarize_with_mock_handler(self):
        handler = MagicMock(return_value=CompletionResponse(content="Summary of conversation"))
        summarizer = ConversationSummarizer(handler, model="small-model")
        turns = [
            Turn.user("What is Python?"),
            Turn.assistant("Python is a programming language."),
        ]
        assert summarizer.summarize(turns) == "Summary of conversation"

        request = handler.call_args[0][0]
        assert request.system_prompt == SUMMARY_SYSTEM_PROMPT
        assert request.model == "small-model"
        assert request.max_tokens == 500
        assert request.temperature == 0.3
        assert len(request.messages) == 1
        assert request.messages[0].role is Role.USER
        assert request.messages[0].content == (
            "user: What is Python?\n"
            "assistant: Python is a programming language.\n"
        )

    def test_empty_turns_skip_model(self):
        handler = MagicMock()
        summarizer = ConversationSummarizer(handler)
        assert summarizer.summarize([]) == ""
        handler.assert_not_called()

    def test_handler_failure_raises(self):
        handler = MagicMock(side_effect=ConnectionError("timeout"))
        summarizer = ConversationSummarizer(handler)
        with pytest.raises(SummarizationError) as exc_info:
            summarizer.summarize([Turn.user("hi")])
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_from_chat_model(self):
        llm = FakeListChatModel(responses=["A short summary"])
        summarizer = ConversationSummarizer.from_chat_model(llm)
        assert summarizer.summarize([Turn.user("hello")]) == "A short summary"


class TestTruncatingSummarizer:
    def test_excerpt_format(self):
        summarizer = TruncatingSummarizer()
        result = summarizer.summarize([Turn.user("hi"), Turn.assistant("hello")])
        assert result == "[Conversation excerpt] user: hi | assistant: hello | "

    def test_long_turns_excerpted(self):
        summarizer = TruncatingSummarizer(max_length=1000)
        result = summarizer.summarize([Turn.user("x" * 300)])
        assert "x" * 100 + "..." in result
        assert "x" * 101 not in result

    def test_result_capped(self):
        summarizer = TruncatingSummarizer(max_length=50)
        result = summarizer.summarize([Turn.user("y" * 200) for _ in range(3)])
        assert len(result) == 53
        assert result.endswith("...")

    def test_default_length(self):
        assert TruncatingSummarizer(max_length=0).max_length == 500

    def test_empty(self):
        assert TruncatingSummarizer().summarize([]) == ""
