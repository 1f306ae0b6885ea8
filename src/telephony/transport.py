"""Ordered outbound channel for one call's media stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from conversation.errors import TransportClosed, TransportError
from telephony.events import MediaFormat
from telephony.protocol import MediaStreamProtocol

LOGGER = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]
ErrorHandler = Callable[[TransportError], None]


@dataclass(slots=True)
class _Outbound:
    kind: str
    message: str
    duration: float = 0.0


class MediaStreamTransport:
    """Single writer over a vendor WebSocket.

    Every outbound message goes through one FIFO queue drained by one writer
    task, so audio leaves in the order ``send_audio`` was called. With pacing
    enabled the writer releases audio at playback speed, which keeps unplayed
    audio inside the queue where ``send_clear`` can still drop it.
    """

    def __init__(
        self,
        protocol: MediaStreamProtocol,
        send_text: SendText,
        *,
        pace: bool = True,
        max_queued_frames: int = 250,
    ) -> None:
        self._protocol = protocol
        self._send_text = send_text
        self._pace = pace
        self._queue: asyncio.Queue[_Outbound] = asyncio.Queue(maxsize=max_queued_frames)
        self._stream_id: str | None = None
        self._media_format = MediaFormat()
        self._writer: asyncio.Task | None = None
        self._error_handler: ErrorHandler | None = None
        self._failure: TransportError | None = None
        self._closed = False

    @property
    def protocol(self) -> MediaStreamProtocol:
        return self._protocol

    @property
    def stream_id(self) -> str | None:
        return self._stream_id

    @property
    def closed(self) -> bool:
        return self._closed or self._failure is not None

    def set_error_handler(self, handler: ErrorHandler) -> None:
        self._error_handler = handler

    def bind(self, stream_id: str, media_format: MediaFormat | None = None) -> None:
        """Attach the vendor stream id and start the writer task."""

        self._stream_id = stream_id
        if media_format is not None:
            self._media_format = media_format
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=f"transport-writer-{stream_id}")

    async def send_audio(self, frame: bytes) -> None:
        stream_id = self._require_stream()
        duration = self._media_format.frame_duration(frame) if self._pace else 0.0
        await self._queue.put(
            _Outbound("media", self._protocol.media_message(stream_id, frame), duration)
        )

    async def send_mark(self, name: str) -> None:
        stream_id = self._require_stream()
        await self._queue.put(_Outbound("mark", self._protocol.mark_message(stream_id, name)))

    async def send_clear(self) -> None:
        """Drop every queued-but-unsent message, then queue a clear."""

        stream_id = self._require_stream()
        dropped = self._drain()
        if dropped:
            LOGGER.debug("Dropped %d unsent outbound messages on clear", dropped)
        await self._queue.put(_Outbound("clear", self._protocol.clear_message(stream_id)))

    async def wait_flushed(self) -> None:
        """Wait until everything queued so far has been written."""

        self._require_stream()
        await self._queue.join()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._writer is not None:
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
            self._writer = None
        self._drain()

    def _require_stream(self) -> str:
        if self._failure is not None:
            raise TransportClosed(str(self._failure))
        if self._closed:
            raise TransportClosed()
        if self._stream_id is None:
            raise TransportError("Media stream has not started yet.")
        return self._stream_id

    def _drain(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self._queue.task_done()
            dropped += 1

    async def _write_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._send_text(item.message)
                if item.duration:
                    await asyncio.sleep(item.duration)
            except Exception as exc:
                self._fail(exc)
                return
            finally:
                self._queue.task_done()

    def _fail(self, exc: Exception) -> None:
        LOGGER.warning("Media stream send failed on %s: %s", self._stream_id, exc)
        self._failure = TransportError(f"Send failed: {exc}")
        self._drain()
        if self._error_handler is not None:
            self._error_handler(self._failure)
