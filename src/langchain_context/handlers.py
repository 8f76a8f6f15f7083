"""
Request handlers: the boundary between a chat session and a model.

A request handler turns a CompletionRequest into a CompletionResponse; a
stream handler turns it into an iterable of StreamEvents. Sessions only
depend on these callables, so any provider (or a test double) can sit
behind them. Middleware transforms one handler into another, e.g. to add
logging around every call.

Adapters for LangChain chat models and factories reading credentials from
the environment live here as well.

Environment variables:
- API Key: API_KEY > OPENAI_API_KEY > ANTHROPIC_API_KEY
- Base URL: API_BASE_URL > OPENAI_BASE_URL
- CHAT_MODEL, MODEL_PROVIDER: passed to init_chat_model
- MEMORY_EMBEDDING_MODEL, MEMORY_EMBEDDING_API_KEY, MEMORY_EMBEDDING_BASE_URL
"""

import logging
import os
import time
from typing import Callable, Iterable, Iterator, Optional

from dotenv import load_dotenv
from langchain.chat_models import init_chat_model
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, SystemMessage

from .messages import (
    CompletionRequest,
    CompletionResponse,
    StreamEvent,
    Usage,
    content_text,
)

logger = logging.getLogger(__name__)

# .env overrides the process environment
load_dotenv(override=True)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

RequestHandler = Callable[[CompletionRequest], CompletionResponse]
StreamHandler = Callable[[CompletionRequest], Iterable[StreamEvent]]
Middleware = Callable[[RequestHandler], RequestHandler]


def get_credentials() -> tuple[Optional[str], Optional[str]]:
    """
    Read API credentials from the environment.

    Returns:
        (api_key, base_url) tuple
    """
    api_key = (
        os.getenv("API_KEY")
        or os.getenv("OPENAI_API_KEY")
        or os.getenv("ANTHROPIC_API_KEY")
    )
    base_url = os.getenv("API_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    return api_key, base_url


def create_chat_model(model: Optional[str] = None, **kwargs) -> BaseChatModel:
    """
    Create a LangChain chat model using credentials from the environment.

    Args:
        model: Model name, defaults to CHAT_MODEL or gpt-4o-mini
        **kwargs: Extra init_chat_model arguments (temperature, max_tokens...)
    """
    api_key, base_url = get_credentials()
    init_kwargs = dict(kwargs)
    if api_key:
        init_kwargs.setdefault("api_key", api_key)
    if base_url:
        init_kwargs.setdefault("base_url", base_url)

    # Leave the provider unset to let init_chat_model infer it
    model_provider = os.getenv("MODEL_PROVIDER")
    if model_provider:
        init_kwargs.setdefault("model_provider", model_provider)

    return init_chat_model(model or os.getenv("CHAT_MODEL", DEFAULT_MODEL), **init_kwargs)


def create_embeddings(model: Optional[str] = None) -> Embeddings:
    """
    Create an OpenAI-compatible embedding model.

    Embedding credentials: dedicated env vars > general credentials.
    Requires the `openai` extra (langchain-openai).
    """
    from langchain_openai import OpenAIEmbeddings

    api_key, base_url = get_credentials()
    embed_api_key = os.getenv("MEMORY_EMBEDDING_API_KEY") or api_key
    embed_base_url = os.getenv("MEMORY_EMBEDDING_BASE_URL") or base_url

    embed_kwargs = {}
    if embed_api_key:
        embed_kwargs["api_key"] = embed_api_key
    if embed_base_url:
        embed_kwargs["base_url"] = embed_base_url

    return OpenAIEmbeddings(
        model=model or os.getenv("MEMORY_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
        **embed_kwargs,
    )


def apply_middleware(handler: RequestHandler, *middlewares: Middleware) -> RequestHandler:
    """Wrap handler so that the first middleware is the outermost."""
    for middleware in reversed(middlewares):
        handler = middleware(handler)
    return handler


def logging_middleware(log: Optional[logging.Logger] = None) -> Middleware:
    """Middleware that logs duration and token usage of every completion."""
    log = log or logger

    def middleware(next_handler: RequestHandler) -> RequestHandler:
        def handle(request: CompletionRequest) -> CompletionResponse:
            start = time.monotonic()
            try:
                response = next_handler(request)
            except Exception as e:
                log.warning(
                    "Completion request failed after %.2fs: %s",
                    time.monotonic() - start,
                    e,
                )
                raise

            log.info(
                "Completion (%s) finished in %.2fs: %d prompt / %d completion tokens",
                response.model or request.model or "default model",
                time.monotonic() - start,
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
            return response

        return handle

    return middleware


def _to_langchain_messages(request: CompletionRequest) -> list[BaseMessage]:
    messages = [turn.to_langchain() for turn in request.messages]
    # Sessions already lead with a system turn; bare requests carry it separately
    if request.system_prompt and not (
        messages and isinstance(messages[0], SystemMessage)
    ):
        messages.insert(0, SystemMessage(content=request.system_prompt))
    return messages


def _invoke_kwargs(request: CompletionRequest, forward_params: bool) -> dict:
    kwargs = {}
    if request.stop:
        kwargs["stop"] = list(request.stop)
    if not forward_params:
        return kwargs
    if request.max_tokens > 0:
        kwargs["max_tokens"] = request.max_tokens
    if request.temperature > 0:
        kwargs["temperature"] = request.temperature
    if request.top_p > 0:
        kwargs["top_p"] = request.top_p
    return kwargs


def _finish_reason(metadata: dict) -> str:
    return metadata.get("finish_reason") or metadata.get("stop_reason") or ""


def chat_model_handler(llm: BaseChatModel, forward_params: bool = True) -> RequestHandler:
    """
    Adapt a LangChain chat model to a request handler.

    Args:
        llm: Chat model to invoke
        forward_params: Pass non-zero max_tokens/temperature/top_p to invoke
    """

    def handle(request: CompletionRequest) -> CompletionResponse:
        response = llm.invoke(
            _to_langchain_messages(request),
            **_invoke_kwargs(request, forward_params),
        )
        metadata = getattr(response, "response_metadata", None) or {}
        usage_metadata = getattr(response, "usage_metadata", None) or {}
        return CompletionResponse(
            content=content_text(response.content),
            model=metadata.get("model_name") or metadata.get("model") or request.model,
            finish_reason=_finish_reason(metadata),
            usage=Usage(
                prompt_tokens=usage_metadata.get("input_tokens", 0),
                completion_tokens=usage_metadata.get("output_tokens", 0),
                total_tokens=usage_metadata.get("total_tokens", 0),
            ),
        )

    return handle


def chat_model_stream_handler(
    llm: BaseChatModel,
    forward_params: bool = True,
) -> StreamHandler:
    """
    Adapt a LangChain chat model's stream() to a stream handler.

    Errors raised while streaming become a terminal error event; a clean
    end of stream becomes a terminal done event.
    """

    def handle(request: CompletionRequest) -> Iterator[StreamEvent]:
        return _stream_events(
            llm,
            _to_langchain_messages(request),
            _invoke_kwargs(request, forward_params),
        )

    return handle


def _stream_events(llm: BaseChatModel, messages: list, kwargs: dict) -> Iterator[StreamEvent]:
    finish_reason = ""
    try:
        for chunk in llm.stream(messages, **kwargs):
            metadata = getattr(chunk, "response_metadata", None) or {}
            finish_reason = _finish_reason(metadata) or finish_reason
            text = content_text(chunk.content)
            if text:
                yield StreamEvent(content=text)
    except Exception as e:
        logger.warning("Model stream failed: %s", e)
        yield StreamEvent(done=True, error=e)
        return

    yield StreamEvent(done=True, finish_reason=finish_reason or "stop")
