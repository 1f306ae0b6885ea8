"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used to build media-stream URLs (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # Business defaults (used when the directory cannot resolve the called number)
    default_business_id: str = Field(default="default")
    default_business_name: str = Field(default="Mi Negocio")
    default_language: str = Field(default="es")
    default_timezone: str = Field(default="Europe/Madrid")

    # Web app (business directory, calendar backend)
    web_app_url: str | None = Field(
        default=None,
        description="Base URL of the dashboard web app exposing /api/voice and /api/calendar routes.",
    )
    voice_service_api_key: str | None = Field(default=None)
    knowledge_lookup_url: str | None = Field(
        default=None,
        description="Optional endpoint returning business knowledge for a caller query.",
    )

    # Speech recognition
    stt_provider: Literal["deepgram"] = Field(default="deepgram")
    deepgram_api_key: str | None = Field(default=None)
    deepgram_model: str = Field(default="nova-2")
    stt_language: str = Field(default="es")
    stt_encoding: str = Field(default="mulaw")
    stt_sample_rate: int = Field(default=8000)
    stt_interim_results: bool = Field(default=True)
    stt_utterance_end_ms: int = Field(default=1000, ge=1000)
    stt_endpointing_ms: int = Field(default=300, ge=10)

    # Text to speech
    tts_provider: Literal["elevenlabs", "cartesia"] = Field(default="elevenlabs")
    elevenlabs_api_key: str | None = Field(default=None)
    elevenlabs_voice_id: str = Field(default="BIvP0GN1cAtSRTxNHnWS")
    elevenlabs_model: str = Field(default="eleven_multilingual_v2")
    elevenlabs_output_format: str = Field(default="ulaw_8000")
    cartesia_api_key: str | None = Field(default=None)
    cartesia_voice_id: str = Field(default="79f8b5fb-2cc8-479a-80df-29f7a7cf1a3e")
    cartesia_model: str = Field(default="sonic-multilingual")

    # LLM connectivity
    llm_provider: Literal["openai", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None, description="Base URL for a self-hosted or proxied OpenAI-compatible server."
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=150, ge=16)
    llm_history_window: int = Field(
        default=6, ge=1, description="Number of most recent utterances sent to the model."
    )

    # Turn policy
    generation_timeout_seconds: float = Field(default=10.0, gt=0)
    capability_timeout_seconds: float = Field(default=8.0, gt=0)
    barge_in_min_chars: int = Field(default=3, ge=0)
    max_capability_rounds: int = Field(default=1, ge=1, le=3)
    greeting_text: str | None = Field(
        default=None, description="Overrides the default greeting. May contain {business_name}."
    )
    apology_text: str = Field(
        default="Lo siento, ha habido un problema técnico. ¿Puede repetir su pregunta?"
    )
    capability_failure_text: str = Field(
        default="Ahora mismo no puedo gestionar eso. ¿Le puedo ayudar con otra cosa?"
    )

    # Outbound audio
    audio_frame_ms: int = Field(default=20, ge=10, le=100)
    outbound_queue_frames: int = Field(default=250, ge=1)
    pace_outbound_audio: bool = Field(
        default=True,
        description="If true, outbound frames are released at playback speed so barge-in can clear them.",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
