"""Twilio Voice integration.

This module provides:
- Voice webhook answering with TwiML that connects the call to a media stream.
- The bidirectional Media Streams WebSocket carrying the call audio.
"""

from __future__ import annotations

import logging
from xml.sax.saxutils import escape, quoteattr

from fastapi import APIRouter, Depends, Request, Response, WebSocket

from api.dependencies import get_directory, get_registry
from api.media_stream import serve_media_stream
from config.settings import get_settings
from conversation.registry import SessionRegistry
from integrations.web_app import BusinessDirectory
from telephony.twilio import TwilioMediaStream

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/twilio", tags=["twilio"])


def _to_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url.removeprefix("https://")
    if http_url.startswith("http://"):
        return "ws://" + http_url.removeprefix("http://")
    return http_url


def _stream_url(request: Request) -> str:
    settings = get_settings()
    if settings.public_base_url:
        return _to_ws_url(f"{settings.public_base_url.rstrip('/')}/api/twilio/stream")
    # Behind proxies the request host may be wrong; prefer PUBLIC_BASE_URL.
    return _to_ws_url(str(request.base_url).rstrip("/") + "/api/twilio/stream")


def _twiml_connect_stream(*, stream_url: str, parameters: dict[str, str]) -> str:
    params = "".join(
        f"<Parameter name={quoteattr(name)} value={quoteattr(value)} />"
        for name, value in parameters.items()
        if value
    )
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<Response>"
        "<Connect>"
        f"<Stream url=\"{escape(stream_url)}\">{params}</Stream>"
        "</Connect>"
        "</Response>"
    )


@router.post("/voice")
async def twilio_voice_webhook(request: Request) -> Response:
    form = await request.form()
    call_sid = str(form.get("CallSid") or "").strip() or "unknown"
    parameters = {
        "to": str(form.get("To") or "").strip(),
        "from": str(form.get("From") or "").strip(),
        "callSid": call_sid,
    }
    LOGGER.info("Incoming Twilio call %s to %s", call_sid, parameters["to"] or "unknown number")
    xml = _twiml_connect_stream(stream_url=_stream_url(request), parameters=parameters)
    return Response(content=xml, media_type="application/xml")


@router.websocket("/stream")
async def twilio_media_stream(
    websocket: WebSocket,
    registry: SessionRegistry = Depends(get_registry),
    directory: BusinessDirectory = Depends(get_directory),
) -> None:
    await serve_media_stream(websocket, TwilioMediaStream(), registry=registry, directory=directory)
