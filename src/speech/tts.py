"""Streaming text-to-speech for telephony audio (8 kHz mu-law)."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from config.settings import Settings, get_settings
from speech.stream import SpeechStream

LOGGER = logging.getLogger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io"
CARTESIA_BASE_URL = "https://api.cartesia.ai"
CARTESIA_VERSION = "2024-06-10"


class BaseSynthesizer(ABC):
    """Interface for all streaming text-to-speech synthesizers."""

    def __init__(self, *, frame_bytes: int = 160, max_buffered_frames: int = 50) -> None:
        self._frame_bytes = frame_bytes
        self._max_buffered_frames = max_buffered_frames

    @abstractmethod
    def stream(self, text: str) -> AsyncIterator[bytes]:
        """Yield raw audio chunks in the call's native encoding."""

    def synthesize(self, text: str) -> SpeechStream:
        """Return a lazy, cancellable stream of fixed-size frames for ``text``."""

        return SpeechStream(
            self.stream(text),
            frame_bytes=self._frame_bytes,
            max_buffered_frames=self._max_buffered_frames,
        )


class ElevenLabsSynthesizer(BaseSynthesizer):
    """ElevenLabs streaming endpoint with native ``ulaw_8000`` output."""

    def __init__(
        self,
        *,
        api_key: str,
        voice_id: str,
        model_id: str = "eleven_multilingual_v2",
        output_format: str = "ulaw_8000",
        stability: float = 0.35,
        similarity_boost: float = 0.8,
        style: float = 0.4,
        base_url: str = ELEVENLABS_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        if not api_key:
            raise ValueError("ElevenLabs API key must be configured.")
        self._api_key = api_key
        self._voice_id = voice_id
        self._model_id = model_id
        self._output_format = output_format
        self._voice_settings = {
            "stability": stability,
            "similarity_boost": similarity_boost,
            "style": style,
            "use_speaker_boost": True,
        }
        self._base_url = base_url.rstrip("/")
        self._transport = transport

    async def stream(self, text: str) -> AsyncIterator[bytes]:
        url = f"{self._base_url}/v1/text-to-speech/{self._voice_id}/stream"
        payload = {
            "text": text,
            "model_id": self._model_id,
            "voice_settings": self._voice_settings,
        }
        headers = {"xi-api-key": self._api_key, "Content-Type": "application/json"}

        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            async with client.stream(
                "POST",
                url,
                params={"output_format": self._output_format},
                json=payload,
                headers=headers,
            ) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    yield chunk


class CartesiaSynthesizer(BaseSynthesizer):
    """Cartesia bytes endpoint producing raw ``pcm_mulaw`` audio."""

    def __init__(
        self,
        *,
        api_key: str,
        voice_id: str,
        model_id: str = "sonic-multilingual",
        sample_rate: int = 8000,
        language: str | None = None,
        base_url: str = CARTESIA_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        if not api_key:
            raise ValueError("Cartesia API key must be configured.")
        self._api_key = api_key
        self._voice_id = voice_id
        self._model_id = model_id
        self._sample_rate = sample_rate
        self._language = language
        self._base_url = base_url.rstrip("/")
        self._transport = transport

    async def stream(self, text: str) -> AsyncIterator[bytes]:
        payload = {
            "model_id": self._model_id,
            "transcript": text,
            "voice": {"mode": "id", "id": self._voice_id},
            "output_format": {
                "container": "raw",
                "encoding": "pcm_mulaw",
                "sample_rate": self._sample_rate,
            },
        }
        if self._language:
            payload["language"] = self._language
        headers = {
            "X-API-Key": self._api_key,
            "Cartesia-Version": CARTESIA_VERSION,
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            async with client.stream(
                "POST", f"{self._base_url}/tts/bytes", json=payload, headers=headers
            ) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes():
                    yield chunk


def frame_bytes_for(settings: Settings) -> int:
    """Bytes in one outbound frame of 8-bit telephony audio."""

    return int(settings.stt_sample_rate * settings.audio_frame_ms / 1000)


def build_synthesizer(settings: Settings | None = None) -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    settings = settings or get_settings()
    framing = {"frame_bytes": frame_bytes_for(settings)}
    if settings.tts_provider == "elevenlabs":
        return ElevenLabsSynthesizer(
            api_key=settings.elevenlabs_api_key or "",
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model,
            output_format=settings.elevenlabs_output_format,
            **framing,
        )
    if settings.tts_provider == "cartesia":
        return CartesiaSynthesizer(
            api_key=settings.cartesia_api_key or "",
            voice_id=settings.cartesia_voice_id,
            model_id=settings.cartesia_model,
            sample_rate=settings.stt_sample_rate,
            **framing,
        )
    raise ValueError(f"Unsupported TTS provider: {settings.tts_provider}")
