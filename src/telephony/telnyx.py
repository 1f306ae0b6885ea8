"""Telnyx media streaming protocol.

Telnyx sends JSON events keyed by ``stream_id`` and may deliver raw binary
audio frames on the same socket. Business identifiers travel in the
base64-encoded ``client_state`` set when the call was answered.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import Any

from telephony.events import AudioFrame, Mark, MediaFormat, SessionEvent, Started, Stopped, StreamError
from telephony.protocol import MediaStreamProtocol

LOGGER = logging.getLogger(__name__)


def decode_client_state(client_state: str | None) -> dict[str, str]:
    """Decode the base64 JSON ``client_state`` attached to a Telnyx call."""

    if not client_state:
        return {}
    try:
        payload = json.loads(base64.b64decode(client_state))
    except (binascii.Error, ValueError):
        LOGGER.debug("Ignoring undecodable client_state %r", client_state)
        return {}
    if not isinstance(payload, dict):
        return {}
    return {str(key): str(value) for key, value in payload.items() if value is not None}


class TelnyxMediaStream(MediaStreamProtocol):
    name = "telnyx"

    def _parse(self, message: dict[str, Any]) -> SessionEvent | None:
        event = str(message.get("event") or "")
        if event == "media":
            media = message.get("media") or {}
            payload = self._decode_payload(media.get("payload"))
            if payload is None:
                return None
            return AudioFrame(track=str(media.get("track") or "inbound"), payload=payload)

        if event == "start":
            start = message["start"]
            stream_id = str(start.get("stream_id") or message.get("stream_id") or "")
            if not stream_id:
                return None
            media_format = start.get("media_format") or {}
            return Started(
                session_id=str(start.get("call_control_id") or stream_id),
                stream_id=stream_id,
                media_format=MediaFormat(
                    encoding=str(media_format.get("encoding") or "PCMU"),
                    sample_rate=int(media_format.get("sample_rate") or 8000),
                    channels=int(media_format.get("channels") or 1),
                ),
                parameters=decode_client_state(start.get("client_state")),
            )

        if event == "mark":
            return Mark(name=str((message.get("mark") or {}).get("name") or ""))

        if event == "stop":
            return Stopped(reason=str((message.get("stop") or {}).get("reason") or "stop"))

        if event == "error":
            error = message.get("error") or {}
            return StreamError(message=f"{error.get('message', 'unknown error')} ({error.get('code', '-')})")

        if event == "connected":
            LOGGER.debug("Telnyx stream connected")
        return None

    def _parse_binary(self, raw: bytes) -> SessionEvent | None:
        if not raw:
            return None
        return AudioFrame(track="inbound", payload=raw)

    def media_message(self, stream_id: str, frame: bytes) -> str:
        return json.dumps(
            {
                "event": "media",
                "stream_id": stream_id,
                "media": {"payload": self._encode_payload(frame)},
            }
        )

    def clear_message(self, stream_id: str) -> str:
        return json.dumps({"event": "clear", "stream_id": stream_id})

    def mark_message(self, stream_id: str, name: str) -> str:
        return json.dumps({"event": "mark", "stream_id": stream_id, "mark": {"name": name}})
