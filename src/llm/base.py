"""Shared abstractions for language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ToolCall:
    """A function call requested by the model. ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass(frozen=True)
class ChatReply:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class BaseLLMClient(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    async def chat(
        self,
        messages: Iterable[dict[str, Any]],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        tools: Sequence[dict[str, Any]] | None = None,
    ) -> ChatReply:
        """Return a chat-style completion, optionally with tool calls."""
