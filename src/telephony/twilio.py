"""Twilio Media Streams protocol.

Inbound events: ``connected``, ``start``, ``media``, ``mark``, ``stop``.
Outbound messages: ``media``, ``clear``, ``mark``, all keyed by ``streamSid``.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from telephony.events import AudioFrame, Mark, MediaFormat, SessionEvent, Started, Stopped, StreamError
from telephony.protocol import MediaStreamProtocol

LOGGER = logging.getLogger(__name__)


class TwilioMediaStream(MediaStreamProtocol):
    name = "twilio"

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
            stream_sid = str(start.get("streamSid") or message.get("streamSid") or "")
            if not stream_sid:
                return None
            media_format = start.get("mediaFormat") or {}
            parameters = {
                str(key): str(value) for key, value in (start.get("customParameters") or {}).items()
            }
            return Started(
                session_id=str(start.get("callSid") or stream_sid),
                stream_id=stream_sid,
                media_format=MediaFormat(
                    encoding=str(media_format.get("encoding") or "audio/x-mulaw"),
                    sample_rate=int(media_format.get("sampleRate") or 8000),
                    channels=int(media_format.get("channels") or 1),
                ),
                parameters=parameters,
            )

        if event == "mark":
            return Mark(name=str((message.get("mark") or {}).get("name") or ""))

        if event == "stop":
            return Stopped(reason="stop")

        if event == "error":
            return StreamError(message=str(message.get("error") or "unknown error"))

        if event == "connected":
            LOGGER.debug("Twilio stream connected (protocol %s)", message.get("protocol"))
        return None

    def media_message(self, stream_id: str, frame: bytes) -> str:
        return json.dumps(
            {
                "event": "media",
                "streamSid": stream_id,
                "media": {"payload": self._encode_payload(frame)},
            }
        )

    def clear_message(self, stream_id: str) -> str:
        return json.dumps({"event": "clear", "streamSid": stream_id})

    def mark_message(self, stream_id: str, name: str) -> str:
        return json.dumps({"event": "mark", "streamSid": stream_id, "mark": {"name": name}})
