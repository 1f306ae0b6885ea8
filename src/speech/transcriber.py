"""Streaming speech recognition over Deepgram's live transcription socket."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import websockets
from websockets.exceptions import WebSocketException

from config.settings import Settings, get_settings
from conversation.errors import RecognitionError

LOGGER = logging.getLogger(__name__)

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"

TranscriptCallback = Callable[[str, bool], None]


class BaseTranscriber(ABC):
    """Audio in, transcripts out.

    ``on_transcript(text, is_final)`` receives zero or more interim results
    followed by exactly one final result per utterance. Provider errors are
    logged and listening continues.
    """

    @abstractmethod
    async def start(self, on_transcript: TranscriptCallback) -> None:
        """Open the recognition stream."""

    @abstractmethod
    def push_audio(self, frame: bytes) -> None:
        """Queue one inbound audio frame; never blocks."""

    @abstractmethod
    async def close(self) -> None:
        """Stop recognition. Safe to call more than once."""


class DeepgramTranscriber(BaseTranscriber):
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "nova-2",
        language: str = "es",
        encoding: str = "mulaw",
        sample_rate: int = 8000,
        interim_results: bool = True,
        utterance_end_ms: int = 1000,
        endpointing_ms: int = 300,
        reconnect_delay: float = 1.0,
        max_buffered_frames: int = 500,
        url: str = DEEPGRAM_LISTEN_URL,
    ) -> None:
        if not api_key:
            raise ValueError("Deepgram API key must be configured.")
        self._api_key = api_key
        self._params = {
            "model": model,
            "language": language,
            "encoding": encoding,
            "sample_rate": sample_rate,
            "channels": 1,
            "interim_results": str(interim_results).lower(),
            "utterance_end_ms": utterance_end_ms,
            "endpointing": endpointing_ms,
            "vad_events": "true",
            "smart_format": "true",
        }
        self._url = url
        self._reconnect_delay = reconnect_delay
        self._audio: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=max_buffered_frames)
        self._callback: TranscriptCallback | None = None
        self._segments: list[str] = []
        self._task: asyncio.Task | None = None
        self._closed = False
        self.last_error: RecognitionError | None = None

    @property
    def listen_url(self) -> str:
        return f"{self._url}?{urlencode(self._params)}"

    async def start(self, on_transcript: TranscriptCallback) -> None:
        if self._task is not None:
            return
        self._callback = on_transcript
        self._task = asyncio.create_task(self._run(), name="deepgram-transcriber")

    def push_audio(self, frame: bytes) -> None:
        if self._closed or not frame:
            return
        if self._audio.full():
            # Keep the most recent audio while the socket is unavailable.
            self._audio.get_nowait()
            LOGGER.debug("Recognition buffer full; dropping oldest frame")
        self._audio.put_nowait(frame)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._audio.full():
            self._audio.get_nowait()
        self._audio.put_nowait(None)
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=2.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        except Exception as exc:
            self._report(RecognitionError(f"Recognizer stopped with an error: {exc}"))

    async def _run(self) -> None:
        headers = {"Authorization": f"Token {self._api_key}"}
        while not self._closed:
            try:
                async with websockets.connect(self.listen_url, additional_headers=headers) as ws:
                    LOGGER.info("Deepgram connection opened")
                    await self._stream(ws)
            except (OSError, WebSocketException) as exc:
                self._report(RecognitionError(f"Deepgram stream failed: {exc}"))
            except Exception as exc:
                self._report(RecognitionError(f"Deepgram stream failed: {exc!r}"))
            else:
                LOGGER.info("Deepgram connection closed")
            if not self._closed:
                await asyncio.sleep(self._reconnect_delay)

    async def _stream(self, ws: Any) -> None:
        sender = asyncio.create_task(self._send_loop(ws))
        try:
            async for message in ws:
                if isinstance(message, str):
                    self.handle_message(message)
                if sender.done():
                    break
        finally:
            if not sender.done():
                sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    async def _send_loop(self, ws: Any) -> None:
        while True:
            frame = await self._audio.get()
            if frame is None:
                await ws.send(json.dumps({"type": "CloseStream"}))
                return
            await ws.send(frame)

    def handle_message(self, raw: str) -> None:
        """Apply one Deepgram message to the utterance being assembled."""

        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.debug("Ignoring non-JSON Deepgram message")
            return
        if not isinstance(message, dict):
            LOGGER.debug("Ignoring non-object Deepgram message")
            return

        kind = message.get("type")
        if kind == "Results":
            self._on_results(message)
        elif kind == "UtteranceEnd":
            self._flush_final()
        elif kind in {"Error", "error"}:
            self._report(RecognitionError(str(message.get("description") or message)))

    def _on_results(self, message: dict[str, Any]) -> None:
        channel = message.get("channel")
        alternatives = channel.get("alternatives") if isinstance(channel, dict) else None
        first = alternatives[0] if isinstance(alternatives, list) and alternatives else None
        text = str(first.get("transcript") or "").strip() if isinstance(first, dict) else ""

        if message.get("is_final"):
            if text:
                self._segments.append(text)
            if message.get("speech_final"):
                self._flush_final()
            elif text:
                self._emit(" ".join(self._segments), False)
            return

        if text:
            self._emit(" ".join([*self._segments, text]), False)

    def _report(self, error: RecognitionError) -> None:
        self.last_error = error
        LOGGER.warning("Recognition error, still listening: %s", error.detail)

    def _flush_final(self) -> None:
        text = " ".join(self._segments).strip()
        self._segments.clear()
        if text:
            self._emit(text, True)

    def _emit(self, text: str, is_final: bool) -> None:
        if self._callback is not None:
            self._callback(text, is_final)


def build_transcriber(settings: Settings | None = None) -> BaseTranscriber:
    """Factory returning a new recognizer for one call."""

    settings = settings or get_settings()
    if settings.stt_provider == "deepgram":
        return DeepgramTranscriber(
            api_key=settings.deepgram_api_key or "",
            model=settings.deepgram_model,
            language=settings.stt_language,
            encoding=settings.stt_encoding,
            sample_rate=settings.stt_sample_rate,
            interim_results=settings.stt_interim_results,
            utterance_end_ms=settings.stt_utterance_end_ms,
            endpointing_ms=settings.stt_endpointing_ms,
        )
    raise ValueError(f"Unsupported STT provider: {settings.stt_provider}")
