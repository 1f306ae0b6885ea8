"""Telnyx media streaming WebSocket."""

from __future__ import annotations

from fastapi import APIRouter, Depends, WebSocket

from api.dependencies import get_directory, get_registry
from api.media_stream import serve_media_stream
from conversation.registry import SessionRegistry
from integrations.web_app import BusinessDirectory
from telephony.telnyx import TelnyxMediaStream

router = APIRouter(prefix="/telnyx", tags=["telnyx"])


@router.websocket("/stream/{call_control_id}")
async def telnyx_media_stream(
    websocket: WebSocket,
    call_control_id: str,
    registry: SessionRegistry = Depends(get_registry),
    directory: BusinessDirectory = Depends(get_directory),
) -> None:
    await serve_media_stream(
        websocket,
        TelnyxMediaStream(),
        registry=registry,
        directory=directory,
        session_id=call_control_id,
    )
