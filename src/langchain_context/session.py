"""
Chat session: the conversation-facing state machine.

A ChatSession owns the turn history, the system prompt and the standing
summary of compacted turns. Each send/stream call:

1. appends the user turn optimistically and builds the request
2. calls the request handler with the state lock released
3. on failure (or cancellation) removes the user turn and re-raises
4. on success appends the assistant turn, then trims or compacts

States: IDLE (no request in flight) → AWAITING_RESPONSE → IDLE.

Locking:
- _lock guards history, summary and system prompt. It is only held
  while reading or writing that state, never across a model call, so
  history()/summary() never wait on the network.
- _request_lock serializes send/stream on one session. Different
  sessions run fully in parallel.

Compaction (autocompact configured and history >= threshold) replaces
plain trimming: everything but the keep_recent newest turns is summarized
and dropped. If summarization fails the turns are dropped anyway and the
standing summary is left untouched, so the session stays usable.
"""

import logging
import threading
from enum import Enum
from typing import Iterable, Iterator, Optional, Sequence

from langchain_core.language_models import BaseChatModel

from .config import SessionConfig
from .errors import RequestCancelled, SessionBusyError, StreamError
from .handlers import (
    Middleware,
    RequestHandler,
    StreamHandler,
    apply_middleware,
    chat_model_handler,
    chat_model_stream_handler,
)
from .memory.base import Memory
from .messages import CompletionRequest, CompletionResponse, StreamEvent, Turn

logger = logging.getLogger(__name__)

COMPACTION_PROMPT = "Summarize this conversation concisely, preserving key information:\n\n"
COMPACTION_MAX_TOKENS = 500
COMPACTION_TEMPERATURE = 0.3

SUMMARY_TEMPLATE = "[Previous conversation summary: {}]"


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_RESPONSE = "awaiting_response"


def _raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise RequestCancelled("request cancelled")


class ChatSession:
    """
    A conversation with a model behind a request handler.

    Usage:
        session = ChatSession.from_chat_model(
            create_chat_model(),
            system_prompt="You are a helpful assistant.",
            config=SessionConfig(autocompact=AutocompactConfig(threshold=20)),
        )
        response = session.send("Hello")
        for event in session.stream("Tell me more"):
            print(event.content, end="")
    """

    def __init__(
        self,
        handler: RequestHandler,
        stream_handler: Optional[StreamHandler] = None,
        config: Optional[SessionConfig] = None,
        system_prompt: str = "",
        messages: Optional[Sequence[Turn]] = None,
        memory: Optional[Memory] = None,
    ):
        """
        Args:
            handler: Completes requests (also used for default compaction summaries)
            stream_handler: Streams requests; required for stream()
            config: History limits, autocompaction and generation defaults
            system_prompt: Initial system prompt
            messages: Turns to seed the history with
            memory: Optional memory mirroring every completed exchange
        """
        self._handler = handler
        self._stream_handler = stream_handler
        self.config = config or SessionConfig()
        self._memory = memory

        self._system = system_prompt
        self._history: list[Turn] = list(messages or [])
        self._summary = ""
        # Bumped by clear() so late responses cannot resurrect old state
        self._generation = 0

        self._lock = threading.RLock()
        self._request_lock = threading.Lock()
        self._request_owner: Optional[threading.Thread] = None

    @classmethod
    def from_chat_model(
        cls,
        llm: BaseChatModel,
        middlewares: Iterable[Middleware] = (),
        **kwargs,
    ) -> "ChatSession":
        """Create a session backed by a LangChain chat model."""
        handler = apply_middleware(chat_model_handler(llm), *middlewares)
        return cls(handler, stream_handler=chat_model_stream_handler(llm), **kwargs)

    # -- accessors --

    def history(self) -> list[Turn]:
        """A copy of the conversation history."""
        with self._lock:
            return list(self._history)

    def summary(self) -> str:
        """The standing summary of compacted turns."""
        with self._lock:
            return self._summary

    def system(self) -> str:
        with self._lock:
            return self._system

    def set_system(self, prompt: str) -> None:
        with self._lock:
            self._system = prompt

    @property
    def memory(self) -> Optional[Memory]:
        return self._memory

    @property
    def state(self) -> SessionState:
        if self._request_lock.locked():
            return SessionState.AWAITING_RESPONSE
        return SessionState.IDLE

    def clear(self) -> None:
        """Reset history, summary and any attached memory."""
        with self._lock:
            self._history = []
            self._summary = ""
            self._generation += 1
        if self._memory is not None:
            self._memory.clear()

    def recall(self, query: str, top_k: int = 0) -> list[Turn]:
        """Turns relevant to query from the attached memory (history without one)."""
        if self._memory is None:
            return self.history()
        return self._memory.get_relevant(query, top_k)

    # -- requests --

    def send(
        self,
        message: str,
        cancel: Optional[threading.Event] = None,
    ) -> CompletionResponse:
        """
        Send a user message and return the model's response.

        Handler errors propagate unchanged after the user turn is removed;
        a set cancel event raises RequestCancelled the same way.
        """
        self._begin_request()
        try:
            user_turn, generation, request = self._push_user_turn(message, stream=False)
            try:
                _raise_if_cancelled(cancel)
                response = self._handler(request)
                _raise_if_cancelled(cancel)
            except BaseException:
                self._rollback(user_turn, generation)
                raise
            self._complete(user_turn, generation, response.content)
            return response
        finally:
            self._end_request()

    def stream(
        self,
        message: str,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[StreamEvent]:
        """
        Send a user message and stream the response.

        The assistant turn is recorded once the done event arrives. An
        error event, an early end of stream, cancellation, or closing the
        iterator before done removes the user turn again. The session
        stays busy until the returned iterator is exhausted or closed.
        """
        if self._stream_handler is None:
            raise ValueError("session has no stream handler")

        self._begin_request()
        try:
            user_turn, generation, request = self._push_user_turn(message, stream=True)
            try:
                _raise_if_cancelled(cancel)
                events = iter(self._stream_handler(request))
            except BaseException:
                self._rollback(user_turn, generation)
                raise
        except BaseException:
            self._end_request()
            raise

        drain = self._drain(events, user_turn, generation, cancel)
        # Start the generator so closing or collecting it always runs cleanup
        next(drain)
        return drain

    def _drain(
        self,
        events: Iterator[StreamEvent],
        user_turn: Turn,
        generation: int,
        cancel: Optional[threading.Event],
    ) -> Iterator[StreamEvent]:
        completed = False
        parts: list[str] = []
        try:
            yield None
            for event in events:
                _raise_if_cancelled(cancel)
                if event.error is not None:
                    raise event.error
                parts.append(event.content)
                if event.done:
                    self._complete(user_turn, generation, "".join(parts))
                    completed = True
                    yield event
                    return
                yield event
            raise StreamError("stream ended without a done event")
        finally:
            if not completed:
                self._rollback(user_turn, generation)
            close = getattr(events, "close", None)
            if close is not None:
                close()
            self._end_request()

    def _begin_request(self) -> None:
        # Idents are recycled after a thread exits, Thread objects are not
        if self._request_owner is threading.current_thread():
            raise SessionBusyError("a request is already in flight on this session")
        self._request_lock.acquire()
        self._request_owner = threading.current_thread()

    def _end_request(self) -> None:
        self._request_owner = None
        self._request_lock.release()

    # -- history bookkeeping --

    def _push_user_turn(
        self,
        message: str,
        stream: bool,
    ) -> tuple[Turn, int, CompletionRequest]:
        turn = Turn.user(message)
        with self._lock:
            self._history.append(turn)
            request = CompletionRequest(
                messages=self._build_messages(),
                system_prompt=self._system,
                model=self.config.model,
                max_tokens=self.config.max_output_tokens,
                temperature=self.config.temperature,
                stop=list(self.config.stop),
                stream=stream,
            )
            return turn, self._generation, request

    def _rollback(self, user_turn: Turn, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            if self._history and self._history[-1] is user_turn:
                self._history.pop()

    def _complete(self, user_turn: Turn, generation: int, content: str) -> None:
        assistant_turn = Turn.assistant(content)
        older: list[Turn] = []
        with self._lock:
            if generation != self._generation:
                logger.info("Session cleared while a request was in flight, dropping response")
                return
            self._history.append(assistant_turn)
            compacting = self._should_compact()
            if compacting:
                keep = self.config.autocompact.keep_recent
                older = self._history[: max(len(self._history) - keep, 0)]
            else:
                self._trim_history()

        if compacting and older:
            self._compact(older, generation)
        self._remember(user_turn, assistant_turn)

    def _build_messages(self) -> list[Turn]:
        messages: list[Turn] = []
        if self._system:
            content = self._system
            if self._summary:
                content += "\n\n" + SUMMARY_TEMPLATE.format(self._summary)
            messages.append(Turn.system(content))
        elif self._summary:
            messages.append(Turn.system(SUMMARY_TEMPLATE.format(self._summary)))
        messages.extend(self._history)
        return messages

    def _should_compact(self) -> bool:
        autocompact = self.config.autocompact
        return autocompact is not None and len(self._history) >= autocompact.threshold

    def _trim_history(self) -> None:
        # Count limit first, then token limit (always keeping the newest turn)
        limit = self.config.history_limit
        if limit > 0 and len(self._history) > limit:
            del self._history[: len(self._history) - limit]

        max_tokens = self.config.max_tokens
        if max_tokens <= 0:
            return
        count_tokens = self.config.token_counter
        total = sum(count_tokens(turn.content) for turn in self._history)
        while total > max_tokens and len(self._history) > 1:
            total -= count_tokens(self._history.pop(0).content)

    def _compact(self, older: list[Turn], generation: int) -> None:
        """Summarize older turns (lock released), then drop them."""
        try:
            summary: Optional[str] = self._summarize(older)
        except Exception as e:
            logger.warning(
                "Failed to summarize %d turns during compaction, dropping them without a summary: %s",
                len(older),
                e,
            )
            summary = None

        with self._lock:
            if generation != self._generation:
                return
            # The request lock keeps the history prefix unchanged meanwhile
            del self._history[: len(older)]
            if summary is not None:
                if self._summary:
                    self._summary = f"{self._summary}\n\n{summary}"
                else:
                    self._summary = summary

        logger.info("Compacted %d turns, %d remain", len(older), len(self._history))

    def _summarize(self, turns: list[Turn]) -> str:
        summarizer = self.config.autocompact.summarizer
        if summarizer is not None:
            return summarizer.summarize(turns)

        conversation_text = "".join(f"{turn}\n\n" for turn in turns)
        response = self._handler(
            CompletionRequest(
                messages=[Turn.user(COMPACTION_PROMPT + conversation_text)],
                model=self.config.model,
                max_tokens=COMPACTION_MAX_TOKENS,
                temperature=COMPACTION_TEMPERATURE,
            )
        )
        return response.content

    def _remember(self, user_turn: Turn, assistant_turn: Turn) -> None:
        if self._memory is None:
            return
        for turn in (user_turn, assistant_turn):
            try:
                self._memory.add(turn)
            except Exception as e:
                logger.warning("Failed to record turn in memory: %s", e)
