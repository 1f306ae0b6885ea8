"""Turn-based response generation with capability (tool) calls."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from conversation.errors import GenerationError, GenerationTimeout
from conversation.schemas import (
    BusinessContext,
    CapabilityRequest,
    CapabilityResult,
    GenerationResult,
    Utterance,
)
from conversation.state_utils import build_llm_history, build_system_prompt, capability_messages
from llm.base import BaseLLMClient, ChatReply

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapabilityExchange:
    """One completed capability round of the current turn."""

    request: CapabilityRequest
    result: CapabilityResult
    preface: str = ""


class ResponseGenerator:
    """Computes the assistant's next move from the conversation so far.

    The generator never touches session state: it receives a snapshot of the
    history and returns a ``GenerationResult``. Every call is bounded by a
    timeout and any provider failure surfaces as ``GenerationError``.
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        history_window: int = 6,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._history_window = history_window
        self._timeout = timeout_seconds

    async def generate(
        self,
        history: Sequence[Utterance],
        context: BusinessContext,
        *,
        knowledge: str = "",
        capabilities: Sequence[dict[str, Any]] | None = None,
        timeout: float | None = None,
    ) -> GenerationResult:
        messages = self._base_messages(history, context, knowledge, calendar=bool(capabilities))
        return await self._complete(messages, capabilities, timeout)

    async def resume(
        self,
        history: Sequence[Utterance],
        context: BusinessContext,
        request: CapabilityRequest,
        result: CapabilityResult,
        *,
        knowledge: str = "",
        earlier: Sequence[CapabilityExchange] = (),
        preface: str = "",
        capabilities: Sequence[dict[str, Any]] | None = None,
        timeout: float | None = None,
    ) -> GenerationResult:
        """Continue the turn after a capability returned.

        ``capabilities`` should only be passed while another capability round
        is still allowed; without them the model can only answer in text.
        """

        messages = self._base_messages(history, context, knowledge, calendar=True)
        for exchange in [*earlier, CapabilityExchange(request, result, preface)]:
            messages.extend(
                capability_messages(exchange.request, exchange.result, preface=exchange.preface)
            )
        return await self._complete(messages, capabilities, timeout)

    def _base_messages(
        self,
        history: Sequence[Utterance],
        context: BusinessContext,
        knowledge: str,
        *,
        calendar: bool,
    ) -> list[dict[str, Any]]:
        if not history:
            raise GenerationError("Cannot generate a response without conversation history.")
        system_prompt = build_system_prompt(
            context,
            knowledge=knowledge,
            capabilities_available=calendar and context.capabilities_enabled,
        )
        return build_llm_history(system_prompt, history, window=self._history_window)

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        capabilities: Sequence[dict[str, Any]] | None,
        timeout: float | None,
    ) -> GenerationResult:
        limit = timeout if timeout is not None else self._timeout
        try:
            reply = await asyncio.wait_for(
                self._llm.chat(
                    messages,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    tools=list(capabilities) if capabilities else None,
                ),
                timeout=limit,
            )
        except asyncio.TimeoutError as exc:
            LOGGER.warning("LLM call exceeded %.1fs", limit)
            raise GenerationTimeout() from exc
        except GenerationError:
            raise
        except Exception as exc:
            LOGGER.warning("LLM call failed: %s", exc)
            raise GenerationError(f"LLM call failed: {exc}") from exc

        return _to_result(reply)


def _to_result(reply: ChatReply) -> GenerationResult:
    text = (reply.text or "").strip()
    if not reply.tool_calls:
        return GenerationResult(text=text)

    if len(reply.tool_calls) > 1:
        LOGGER.info("Model requested %d tool calls; using the first", len(reply.tool_calls))
    call = reply.tool_calls[0]
    try:
        arguments = json.loads(call.arguments or "{}")
    except json.JSONDecodeError:
        LOGGER.warning("Unparsable arguments for %s: %r", call.name, call.arguments)
        arguments = {}
    if not isinstance(arguments, dict):
        LOGGER.warning("Arguments for %s are not an object: %r", call.name, arguments)
        arguments = {}
    return GenerationResult(
        text=text,
        capability_request=CapabilityRequest(id=call.id, name=call.name, arguments=arguments),
    )
