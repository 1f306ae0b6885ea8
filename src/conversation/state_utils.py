from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from conversation.schemas import BusinessContext, CapabilityRequest, CapabilityResult, Utterance
from prompts.loader import load_prompt, render_prompt

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT_FILE = "receptionist_system.txt"
CALENDAR_INSTRUCTIONS_FILE = "calendar_instructions.txt"

HANDOFF_PHRASES = (
    "transferir",
    "paso con",
    "comunico con",
    "humano",
    "persona",
    "no puedo ayudar",
    "equipo",
    "transfer",
    "human",
)


def today_for(context: BusinessContext) -> date:
    try:
        zone = ZoneInfo(context.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.debug("Unknown timezone %r, using UTC", context.timezone)
        zone = ZoneInfo("UTC")
    return datetime.now(zone).date()


def build_system_prompt(
    context: BusinessContext,
    *,
    knowledge: str = "",
    capabilities_available: bool = False,
    today: date | None = None,
) -> str:
    """Render the receptionist prompt for one business and one turn."""

    knowledge = knowledge.strip()
    business_information = f"\nBUSINESS INFORMATION:\n{knowledge}\n" if knowledge else ""
    calendar_instructions = (
        "\n" + load_prompt(CALENDAR_INSTRUCTIONS_FILE) if capabilities_available else ""
    )
    personality = f"Personality: {context.personality.strip()}\n" if context.personality else ""
    return render_prompt(
        SYSTEM_PROMPT_FILE,
        business_name=context.business_name,
        today=(today or today_for(context)).isoformat(),
        personality=personality,
        business_information=business_information,
        calendar_instructions=calendar_instructions,
    )


def build_llm_history(
    system_prompt: str, utterances: Iterable[Utterance], *, window: int | None = None
) -> list[dict[str, Any]]:
    recent = list(utterances)
    if window is not None:
        recent = recent[-window:] if window > 0 else []
    history: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for utt in recent:
        history.append({"role": utt.role, "content": utt.text})
    return history


def capability_messages(
    request: CapabilityRequest, result: CapabilityResult, *, preface: str = ""
) -> list[dict[str, Any]]:
    """Assistant tool-call message followed by the tool result message."""

    return [
        {
            "role": "assistant",
            "content": preface or None,
            "tool_calls": [
                {
                    "id": request.id,
                    "type": "function",
                    "function": {"name": request.name, "arguments": request.arguments_json()},
                }
            ],
        },
        {"role": "tool", "tool_call_id": request.id, "content": result.to_tool_content()},
    ]


def detect_handoff(text: str, phrases: Sequence[str] = HANDOFF_PHRASES) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in phrases)
