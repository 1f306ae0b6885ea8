"""Pydantic value objects exchanged inside a call session."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Utterance(BaseModel):
    """One spoken line of the conversation. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    role: Role
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("text")
    @classmethod
    def text_not_empty(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("Text may not be empty.")
        return text


class BusinessContext(BaseModel):
    """Caller-independent configuration of the business answering the call."""

    model_config = ConfigDict(frozen=True)

    business_id: str
    business_name: str
    language: str = "es"
    timezone: str = "Europe/Madrid"
    greeting: str | None = None
    personality: str | None = None
    calendar_connection_id: str | None = None
    calendar_enabled: bool = True

    @property
    def knowledge_key(self) -> str:
        return self.business_id

    @property
    def capabilities_enabled(self) -> bool:
        return self.calendar_enabled


class CapabilityRequest(BaseModel):
    """A capability invocation requested by the response generator."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)

    def arguments_json(self) -> str:
        return json.dumps(self.arguments, ensure_ascii=False)


class CapabilityResult(BaseModel):
    """Structured outcome of a capability call; failures are values, not exceptions."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""
    data: dict[str, Any] | None = None
    reason: str | None = None

    @classmethod
    def ok(cls, message: str = "", data: dict[str, Any] | None = None) -> CapabilityResult:
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, reason: str, message: str = "") -> CapabilityResult:
        return cls(success=False, reason=reason, message=message)

    @property
    def is_failure(self) -> bool:
        return not self.success

    def to_tool_content(self) -> str:
        return self.model_dump_json(exclude_none=True)


class GenerationResult(BaseModel):
    """Text and/or capability request produced by one generation call."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    capability_request: CapabilityRequest | None = None
