from __future__ import annotations

from dataclasses import dataclass

from config.settings import Settings, get_settings
from conversation.schemas import BusinessContext

CALENDAR_GREETING = (
    "¡Hola! Gracias por llamar a {business_name}. Puedo ayudarte con información, "
    "o si quieres, también puedo gestionar citas. ¿En qué te puedo ayudar?"
)
PLAIN_GREETING = "¡Hola! Gracias por llamar a {business_name}. ¿En qué puedo ayudarle hoy?"


@dataclass(frozen=True)
class TurnPolicy:
    """Per-session knobs of the turn manager."""

    generation_timeout: float = 10.0
    capability_timeout: float = 8.0
    barge_in_min_chars: int = 3
    max_capability_rounds: int = 1
    greeting_text: str | None = None
    apology_text: str = "Lo siento, ha habido un problema técnico. ¿Puede repetir su pregunta?"
    capability_failure_text: str = (
        "Ahora mismo no puedo gestionar eso. ¿Le puedo ayudar con otra cosa?"
    )
    speech_end_mark: str = "speech_end"

    def __post_init__(self) -> None:
        if self.max_capability_rounds < 1:
            raise ValueError("max_capability_rounds must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TurnPolicy:
        settings = settings or get_settings()
        return cls(
            generation_timeout=settings.generation_timeout_seconds,
            capability_timeout=settings.capability_timeout_seconds,
            barge_in_min_chars=settings.barge_in_min_chars,
            max_capability_rounds=settings.max_capability_rounds,
            greeting_text=settings.greeting_text,
            apology_text=settings.apology_text,
            capability_failure_text=settings.capability_failure_text,
        )

    def greeting_for(self, context: BusinessContext) -> str:
        if context.greeting:
            return context.greeting
        template = self.greeting_text or (
            CALENDAR_GREETING if context.capabilities_enabled else PLAIN_GREETING
        )
        return template.replace("{business_name}", context.business_name)

    def is_barge_in(self, interim_text: str) -> bool:
        return len(interim_text.strip()) > self.barge_in_min_chars
