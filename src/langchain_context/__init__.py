"""
Context window management for LLM conversations.

Decides which part of a conversation goes into each completion request:

- ChatSession: conversation state machine with rollback on failure,
  history limits and automatic compaction into a standing summary
- memory: bounded history buffer, retrieval-augmented memory, vector
  store and summarizers
- handlers: request/stream handler contracts, middleware and LangChain
  chat model adapters
"""

from .config import AutocompactConfig, SessionConfig
from .errors import (
    ContextError,
    EmbeddingError,
    MemoryClearError,
    RequestCancelled,
    SessionBusyError,
    StreamError,
    SummarizationError,
)
from .handlers import (
    Middleware,
    RequestHandler,
    StreamHandler,
    apply_middleware,
    chat_model_handler,
    chat_model_stream_handler,
    create_chat_model,
    create_embeddings,
    logging_middleware,
)
from .messages import (
    CompletionRequest,
    CompletionResponse,
    Role,
    StreamEvent,
    Turn,
    Usage,
)
from .session import ChatSession, SessionState

__all__ = [
    "ChatSession",
    "SessionState",
    "SessionConfig",
    "AutocompactConfig",
    "Role",
    "Turn",
    "Usage",
    "CompletionRequest",
    "CompletionResponse",
    "StreamEvent",
    "RequestHandler",
    "StreamHandler",
    "Middleware",
    "apply_middleware",
    "logging_middleware",
    "chat_model_handler",
    "chat_model_stream_handler",
    "create_chat_model",
    "create_embeddings",
    "ContextError",
    "RequestCancelled",
    "StreamError",
    "SessionBusyError",
    "EmbeddingError",
    "SummarizationError",
    "MemoryClearError",
]
