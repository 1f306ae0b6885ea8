"""Cancellable, bounded stream of outbound audio frames."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from conversation.errors import SynthesisError

LOGGER = logging.getLogger(__name__)

_END = object()


class SpeechStream:
    """Re-frame provider audio chunks into fixed-size frames.

    A producer task pulls chunks from the provider and pushes frames into a
    bounded queue; the consumer iterates the stream. ``stop()`` may be called
    from another task at any point and ends iteration at the next frame
    boundary. A stream can be iterated only once.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        *,
        frame_bytes: int = 160,
        max_buffered_frames: int = 50,
    ) -> None:
        if frame_bytes <= 0:
            raise ValueError("frame_bytes must be positive")
        self._chunks = chunks
        self._frame_bytes = frame_bytes
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max_buffered_frames)
        self._producer: asyncio.Task | None = None
        self._stopped = False
        self._exhausted = False
        self.frames_produced = 0

    @property
    def stopped(self) -> bool:
        return self._stopped

    def __aiter__(self) -> SpeechStream:
        return self

    async def __anext__(self) -> bytes:
        if self._stopped or self._exhausted:
            raise StopAsyncIteration
        if self._producer is None:
            self._producer = asyncio.create_task(self._produce(), name="speech-stream-producer")

        item = await self._queue.get()
        if self._stopped or item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self._exhausted = True
            if isinstance(item, SynthesisError):
                raise item
            raise SynthesisError(str(item) or type(item).__name__) from item
        return item  # type: ignore[return-value]

    def stop(self) -> None:
        """End the stream now; frames not yet consumed are discarded."""

        if self._stopped:
            return
        self._stopped = True
        if self._producer is not None:
            self._producer.cancel()
        # Wake a consumer blocked on an empty queue.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)

    async def aclose(self) -> None:
        self.stop()
        if self._producer is not None:
            await asyncio.gather(self._producer, return_exceptions=True)
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()

    async def _produce(self) -> None:
        buffer = b""
        try:
            async for chunk in self._chunks:
                if not chunk:
                    continue
                buffer += chunk
                while len(buffer) >= self._frame_bytes:
                    frame, buffer = buffer[: self._frame_bytes], buffer[self._frame_bytes :]
                    await self._put(frame)
            if buffer:
                await self._put(buffer)
        except Exception as exc:
            LOGGER.warning("Speech synthesis stream failed: %s", exc)
            await self._queue.put(exc)
            return
        await self._queue.put(_END)

    async def _put(self, frame: bytes) -> None:
        await self._queue.put(frame)
        self.frames_produced += 1
