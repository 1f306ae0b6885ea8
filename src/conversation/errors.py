"""Domain-specific exceptions for call sessions.

These exceptions are safe to import from API and telephony layers without
pulling in provider SDKs.
"""

from __future__ import annotations


class AssistantError(Exception):
    default_detail: str = "Assistant error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class RecognitionError(AssistantError):
    default_detail = "Speech recognition failed."


class GenerationError(AssistantError):
    default_detail = "Response generation failed."


class GenerationTimeout(GenerationError):
    default_detail = "Response generation timed out."


class GenerationInProgressError(AssistantError):
    default_detail = "A generation cycle is already in flight for this session."


class SynthesisError(AssistantError):
    default_detail = "Speech synthesis failed."


class TransportError(AssistantError):
    default_detail = "Media stream transport failed."


class TransportClosed(TransportError):
    default_detail = "Media stream transport is closed."


class InvalidTransitionError(AssistantError):
    default_detail = "Invalid session phase transition."


class SessionExistsError(AssistantError):
    default_detail = "A session for this call already exists."
