"""Provider wiring shared by every call handled by this process."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from config.settings import Settings, get_settings
from conversation.generator import ResponseGenerator
from conversation.policy import TurnPolicy
from integrations.calendar import BaseCapabilityExecutor, build_capability_executor
from integrations.knowledge import KnowledgeLookup, build_knowledge_lookup
from llm.factory import build_llm_client
from speech.transcriber import BaseTranscriber, build_transcriber
from speech.tts import BaseSynthesizer, build_synthesizer


@dataclass
class ConversationServices:
    """Stateless collaborators plus a factory for per-call recognizers.

    Recognizers hold a live socket per call, so each session gets a fresh one
    from ``transcriber_factory``; everything else is shared read-only.
    """

    generator: ResponseGenerator
    executor: BaseCapabilityExecutor
    synthesizer: BaseSynthesizer
    knowledge: KnowledgeLookup
    transcriber_factory: Callable[[], BaseTranscriber]
    policy: TurnPolicy = field(default_factory=TurnPolicy)
    pace_outbound_audio: bool = True
    outbound_queue_frames: int = 250


def build_services(settings: Settings | None = None) -> ConversationServices:
    settings = settings or get_settings()
    generator = ResponseGenerator(
        build_llm_client(),
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        history_window=settings.llm_history_window,
        timeout_seconds=settings.generation_timeout_seconds,
    )
    return ConversationServices(
        generator=generator,
        executor=build_capability_executor(settings),
        synthesizer=build_synthesizer(settings),
        knowledge=build_knowledge_lookup(settings),
        transcriber_factory=lambda: build_transcriber(settings),
        policy=TurnPolicy.from_settings(settings),
        pace_outbound_audio=settings.pace_outbound_audio,
        outbound_queue_frames=settings.outbound_queue_frames,
    )
