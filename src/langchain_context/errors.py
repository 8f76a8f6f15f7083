"""
Exceptions raised by the context management package.

Failures of the completion provider itself are not wrapped: they reach
the caller of ChatSession.send/stream exactly as the request handler
raised them. Everything here describes a condition owned by this package.
"""


class ContextError(Exception):
    """Base class for all errors raised by langchain_context."""


class RequestCancelled(ContextError):
    """The caller's cancellation signal fired while a request was in flight."""


class StreamError(ContextError):
    """A streamed completion ended without a done event."""


class SessionBusyError(ContextError):
    """A request was started on a session that this thread already has in flight."""


class EmbeddingError(ContextError):
    """Embedding generation failed."""


class SummarizationError(ContextError):
    """A summarizer could not produce a summary."""


class MemoryClearError(ContextError):
    """Clearing a memory left its stores out of sync."""
