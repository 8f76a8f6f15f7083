"""
Conversation data types shared by the session, the memories and the
request handlers.

A Turn is the unit everything else stores: an immutable (role, content)
pair. Requests, responses and stream events mirror what a completion
provider exchanges with the session, independent of any provider's wire
format. Conversion to and from LangChain messages lives here so the rest
of the package never deals with provider message classes directly.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
)


class Role(str, Enum):
    """Role of a conversation turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: Any, default: Optional["Role"] = None) -> "Role":
        """Recover a role from an arbitrary stored value, falling back to default."""
        if default is None:
            default = cls.USER
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return default
        return default


def content_text(content) -> str:
    """Flatten LangChain message content (str or block list) to plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type", "text") == "text":
                text = block.get("text") or ""
                if text:
                    parts.append(text)
        return "".join(parts)
    return str(content) if content else ""


@dataclass(frozen=True)
class Turn:
    """One message in a conversation."""

    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Turn":
        return cls(Role.ASSISTANT, content)

    @classmethod
    def system(cls, content: str) -> "Turn":
        return cls(Role.SYSTEM, content)

    def to_langchain(self) -> BaseMessage:
        if self.role is Role.SYSTEM:
            return SystemMessage(content=self.content)
        if self.role is Role.ASSISTANT:
            return AIMessage(content=self.content)
        return HumanMessage(content=self.content)

    @classmethod
    def from_langchain(cls, msg: BaseMessage) -> "Turn":
        """Build a turn from a LangChain message (unknown types become user turns)."""
        if isinstance(msg, SystemMessage):
            role = Role.SYSTEM
        elif isinstance(msg, AIMessage):
            role = Role.ASSISTANT
        else:
            role = Role.USER
        return cls(role, content_text(msg.content))

    def __str__(self) -> str:
        return f"{self.role.value}: {self.content}"


@dataclass
class Usage:
    """Token usage reported by a provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionRequest:
    """A completion request: the turns to send plus generation parameters."""

    messages: list[Turn] = field(default_factory=list)
    system_prompt: str = ""
    model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    top_p: float = 0.0
    stop: list[str] = field(default_factory=list)
    stream: bool = False


@dataclass
class CompletionResponse:
    """A completion response."""

    content: str
    model: str = ""
    finish_reason: str = ""
    usage: Usage = field(default_factory=Usage)


@dataclass
class StreamEvent:
    """One incremental event of a streamed completion."""

    content: str = ""
    done: bool = False
    finish_reason: str = ""
    error: Optional[BaseException] = None
