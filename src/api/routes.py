"""FastAPI routes for service health and call inspection."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_registry
from api.schemas import HealthResponse, SessionSummary
from api.telnyx_routes import router as telnyx_router
from api.twilio_routes import router as twilio_router
from conversation.registry import SessionRegistry

router = APIRouter()
router.include_router(twilio_router)
router.include_router(telnyx_router)


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_registry)) -> HealthResponse:
    return HealthResponse(active_sessions=len(registry))


@router.get("/sessions", response_model=list[SessionSummary])
async def list_sessions(registry: SessionRegistry = Depends(get_registry)) -> list[SessionSummary]:
    return [
        SessionSummary(
            session_id=session.id,
            business_id=session.business_context.business_id,
            phase=session.phase.value,
            utterances=len(session.history),
            created_at=session.created_at,
        )
        for session in registry.active()
    ]
