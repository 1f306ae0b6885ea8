"""Runs one vendor media-stream WebSocket as a call session."""

from __future__ import annotations

import logging

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from conversation.errors import SessionExistsError
from conversation.registry import SessionRegistry
from conversation.turn_manager import TurnManager
from integrations.web_app import BusinessDirectory
from telephony.events import Started, Stopped
from telephony.protocol import MediaStreamProtocol

LOGGER = logging.getLogger(__name__)


async def serve_media_stream(
    websocket: WebSocket,
    protocol: MediaStreamProtocol,
    *,
    registry: SessionRegistry,
    directory: BusinessDirectory,
    session_id: str | None = None,
) -> None:
    """Pump vendor messages into a session until the call ends.

    Messages before ``Started`` are discarded. The session is removed from
    the registry however the socket ends.
    """

    await websocket.accept()
    manager: TurnManager | None = None
    stopped = False
    try:
        while manager is None or not manager.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                LOGGER.info("%s media stream disconnected", protocol.name)
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is None:
                continue

            event = protocol.parse_message(raw)
            if event is None:
                continue
            if manager is None:
                if isinstance(event, Stopped):
                    stopped = True
                    break
                if not isinstance(event, Started):
                    continue
                manager = await _open_session(event, protocol, websocket, registry, directory, session_id)
                if manager is None:
                    await websocket.close(code=1008)
                    return

            manager.deliver(event)
            if isinstance(event, Stopped):
                stopped = True
                break
    finally:
        if manager is not None:
            await manager.shutdown("media stream ended")
            if registry.get(manager.session.id) is manager:
                registry.remove(manager.session.id)
        if stopped and websocket.application_state is WebSocketState.CONNECTED:
            await websocket.close()


async def _open_session(
    event: Started,
    protocol: MediaStreamProtocol,
    websocket: WebSocket,
    registry: SessionRegistry,
    directory: BusinessDirectory,
    session_id: str | None,
) -> TurnManager | None:
    context = await directory.resolve(event.parameters)
    try:
        manager = registry.create(session_id or event.session_id, context, protocol, websocket.send_text)
    except SessionExistsError as exc:
        LOGGER.warning("Rejecting %s media stream: %s", protocol.name, exc.detail)
        return None
    manager.start()
    return manager
