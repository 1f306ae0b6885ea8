"""Shared base for vendor media-stream protocols."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from telephony.events import SessionEvent

LOGGER = logging.getLogger(__name__)


class MediaStreamProtocol(ABC):
    """Translate between a vendor's WebSocket messages and session events.

    Implementations must never raise on unexpected input: unknown or malformed
    messages are discarded by returning ``None``.
    """

    name: str = "base"

    def parse_message(self, raw: str | bytes) -> SessionEvent | None:
        message = self._load_json(raw)
        if message is None:
            return self._parse_binary(raw) if isinstance(raw, bytes) else None
        try:
            return self._parse(message)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            LOGGER.debug("Discarding malformed %s message %r: %s", self.name, message, exc)
            return None

    @abstractmethod
    def _parse(self, message: dict[str, Any]) -> SessionEvent | None:
        """Map a decoded JSON message to an event."""

    def _parse_binary(self, raw: bytes) -> SessionEvent | None:
        LOGGER.debug("Discarding %d byte binary %s message", len(raw), self.name)
        return None

    @abstractmethod
    def media_message(self, stream_id: str, frame: bytes) -> str:
        """Render an outbound audio frame."""

    @abstractmethod
    def clear_message(self, stream_id: str) -> str:
        """Render the message that flushes the vendor's playback buffer."""

    @abstractmethod
    def mark_message(self, stream_id: str, name: str) -> str:
        """Render a playback mark."""

    @staticmethod
    def _load_json(raw: str | bytes) -> dict[str, Any] | None:
        try:
            message = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(message, dict):
            return None
        return message

    @staticmethod
    def _decode_payload(payload: Any) -> bytes | None:
        if not isinstance(payload, str) or not payload:
            return None
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError):
            return None

    @staticmethod
    def _encode_payload(frame: bytes) -> str:
        return base64.b64encode(frame).decode("ascii")
