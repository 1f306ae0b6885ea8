"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    active_sessions: int = 0


class SessionSummary(BaseModel):
    session_id: str
    business_id: str
    phase: str
    utterances: int = Field(description="Number of utterances recorded so far.")
    created_at: datetime
