"""Per-call session state. Mutated only by the call's TurnManager."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from conversation.errors import GenerationInProgressError, InvalidTransitionError
from conversation.generator import CapabilityExchange
from conversation.schemas import BusinessContext, CapabilityRequest, Role, Utterance
from speech.stream import SpeechStream

LOGGER = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    GENERATING = "generating"
    AWAITING_CAPABILITY = "awaiting_capability"
    SPEAKING = "speaking"
    CLOSED = "closed"


ACTIVE_PHASES = frozenset({Phase.GENERATING, Phase.AWAITING_CAPABILITY, Phase.SPEAKING})

_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.LISTENING, Phase.CLOSED}),
    Phase.LISTENING: frozenset({Phase.GENERATING, Phase.SPEAKING, Phase.CLOSED}),
    Phase.GENERATING: frozenset(
        {Phase.AWAITING_CAPABILITY, Phase.SPEAKING, Phase.LISTENING, Phase.CLOSED}
    ),
    Phase.AWAITING_CAPABILITY: frozenset({Phase.GENERATING, Phase.CLOSED}),
    Phase.SPEAKING: frozenset({Phase.LISTENING, Phase.CLOSED}),
    Phase.CLOSED: frozenset(),
}


@dataclass
class GenerationCycle:
    """Everything in flight for one turn (or the greeting).

    ``token`` tags the results posted back by spawned tasks so results of a
    cancelled cycle can be recognised and dropped.
    """

    token: int
    kind: str
    task: asyncio.Task | None = None
    speech: SpeechStream | None = None
    knowledge: str = ""
    capability_rounds: int = 0
    pending_request: CapabilityRequest | None = None
    exchanges: list[CapabilityExchange] = field(default_factory=list)
    prefaces: list[str] = field(default_factory=list)
    spoken_text: str = ""

    def cancel(self) -> None:
        if self.speech is not None:
            self.speech.stop()
        if self.task is not None and not self.task.done():
            self.task.cancel()


class Session:
    def __init__(self, session_id: str, business_context: BusinessContext) -> None:
        self.id = session_id
        self.business_context = business_context
        self.created_at = datetime.now(timezone.utc)
        self.cancel_requested = False
        self.greeted = False
        self._phase = Phase.IDLE
        self._history: list[Utterance] = []
        self._active: GenerationCycle | None = None
        self._next_token = 0

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def history(self) -> tuple[Utterance, ...]:
        return tuple(self._history)

    @property
    def active_generation(self) -> GenerationCycle | None:
        return self._active

    @property
    def closed(self) -> bool:
        return self._phase is Phase.CLOSED

    @property
    def is_speaking(self) -> bool:
        return self._phase is Phase.SPEAKING

    @property
    def is_processing(self) -> bool:
        return self._phase in (Phase.GENERATING, Phase.AWAITING_CAPABILITY)

    def append_utterance(self, role: Role, text: str) -> Utterance:
        utterance = Utterance(role=role, text=text)
        self._history.append(utterance)
        return utterance

    def transition(self, target: Phase) -> None:
        if target is self._phase:
            return
        if target not in _TRANSITIONS[self._phase]:
            raise InvalidTransitionError(f"{self._phase.value} -> {target.value}")
        LOGGER.debug("Session %s: %s -> %s", self.id, self._phase.value, target.value)
        self._phase = target
        if target not in ACTIVE_PHASES:
            self._active = None

    def begin_generation(self, kind: str, phase: Phase = Phase.GENERATING) -> GenerationCycle:
        """Start the single in-flight cycle and enter ``phase``."""

        if self._active is not None:
            raise GenerationInProgressError()
        if self._phase is not Phase.LISTENING:
            raise InvalidTransitionError(f"cannot start a cycle while {self._phase.value}")
        if phase not in ACTIVE_PHASES:
            raise InvalidTransitionError(f"a cycle cannot run in {phase.value}")
        self._next_token += 1
        cycle = GenerationCycle(token=self._next_token, kind=kind)
        self.transition(phase)
        self._active = cycle
        self.cancel_requested = False
        return cycle

    def is_current(self, token: int) -> bool:
        return self._active is not None and self._active.token == token

    def close(self) -> bool:
        """Enter CLOSED. Returns False when the session was already closed."""

        if self._phase is Phase.CLOSED:
            return False
        self.transition(Phase.CLOSED)
        return True
