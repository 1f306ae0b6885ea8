"""Vendor-neutral events produced by media-stream protocol adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True, slots=True)
class MediaFormat:
    encoding: str = "audio/x-mulaw"
    sample_rate: int = 8000
    channels: int = 1

    @property
    def bytes_per_sample(self) -> int:
        return 2 if "l16" in self.encoding.lower() or "pcm16" in self.encoding.lower() else 1

    def frame_duration(self, frame: bytes) -> float:
        """Playback duration in seconds of one encoded frame."""

        samples = len(frame) / (self.bytes_per_sample * max(1, self.channels))
        return samples / self.sample_rate


@dataclass(frozen=True, slots=True)
class Started:
    session_id: str
    stream_id: str
    media_format: MediaFormat = field(default_factory=MediaFormat)
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AudioFrame:
    track: str
    payload: bytes


@dataclass(frozen=True, slots=True)
class Mark:
    name: str


@dataclass(frozen=True, slots=True)
class Stopped:
    reason: str


@dataclass(frozen=True, slots=True)
class StreamError:
    message: str


SessionEvent = Union[Started, AudioFrame, Mark, Stopped, StreamError]
