"""Internal events posted to a session's control loop by its own tasks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from conversation.errors import GenerationError, SynthesisError, TransportError
from conversation.schemas import CapabilityRequest, CapabilityResult, GenerationResult
from telephony.events import SessionEvent


@dataclass(frozen=True, slots=True)
class TranscriptReceived:
    text: str
    is_final: bool


@dataclass(frozen=True, slots=True)
class GenerationFinished:
    token: int
    result: GenerationResult | None = None
    error: GenerationError | None = None
    knowledge: str = ""


@dataclass(frozen=True, slots=True)
class CapabilityFinished:
    token: int
    request: CapabilityRequest
    result: CapabilityResult


@dataclass(frozen=True, slots=True)
class SpeechFinished:
    token: int
    error: SynthesisError | None = None


@dataclass(frozen=True, slots=True)
class TransportFailed:
    error: TransportError


ControlEvent = Union[
    TranscriptReceived, GenerationFinished, CapabilityFinished, SpeechFinished, TransportFailed
]
LoopEvent = Union[SessionEvent, ControlEvent]
