from __future__ import annotations

import asyncio
import json
from urllib.parse import parse_qs, urlparse

import pytest

import speech.transcriber as transcriber_module
from fakes import wait_until
from speech.transcriber import DeepgramTranscriber


def _results(text: str, *, is_final: bool, speech_final: bool = False) -> str:
    return json.dumps(
        {
            "type": "Results",
            "is_final": is_final,
            "speech_final": speech_final,
            "channel": {"alternatives": [{"transcript": text, "confidence": 0.9}]},
        }
    )


def _transcriber() -> tuple[DeepgramTranscriber, list[tuple[str, bool]]]:
    received: list[tuple[str, bool]] = []
    transcriber = DeepgramTranscriber(api_key="dg-test")
    transcriber._callback = lambda text, is_final: received.append((text, is_final))
    return transcriber, received


def test_listen_url_carries_streaming_options() -> None:
    transcriber = DeepgramTranscriber(api_key="dg-test", language="es", utterance_end_ms=1000)
    query = parse_qs(urlparse(transcriber.listen_url).query)

    assert query["model"] == ["nova-2"]
    assert query["encoding"] == ["mulaw"]
    assert query["sample_rate"] == ["8000"]
    assert query["interim_results"] == ["true"]
    assert query["utterance_end_ms"] == ["1000"]
    assert query["vad_events"] == ["true"]


def test_final_segments_are_joined_into_one_final_transcript() -> None:
    transcriber, received = _transcriber()

    transcriber.handle_message(_results("quiero", is_final=False))
    transcriber.handle_message(_results("quiero una cita", is_final=True))
    transcriber.handle_message(_results("para el", is_final=False))
    transcriber.handle_message(_results("para el jueves", is_final=True, speech_final=True))

    assert received == [
        ("quiero", False),
        ("quiero una cita", False),
        ("quiero una cita para el", False),
        ("quiero una cita para el jueves", True),
    ]


def test_utterance_end_flushes_pending_segments_once() -> None:
    transcriber, received = _transcriber()

    transcriber.handle_message(_results("hola", is_final=True))
    transcriber.handle_message(json.dumps({"type": "UtteranceEnd", "last_word_end": 1.2}))
    transcriber.handle_message(json.dumps({"type": "UtteranceEnd", "last_word_end": 1.2}))

    assert received == [("hola", False), ("hola", True)]


def test_errors_and_noise_are_not_transcripts() -> None:
    transcriber, received = _transcriber()

    transcriber.handle_message("not json")
    transcriber.handle_message(json.dumps({"type": "SpeechStarted"}))
    transcriber.handle_message(json.dumps({"type": "Error", "description": "bad audio"}))
    transcriber.handle_message(_results("", is_final=True, speech_final=True))

    assert received == []
    assert transcriber.last_error is not None
    assert transcriber.last_error.detail == "bad audio"


def test_missing_key_is_rejected() -> None:
    with pytest.raises(ValueError):
        DeepgramTranscriber(api_key="")


def test_non_object_messages_are_ignored() -> None:
    transcriber, received = _transcriber()

    transcriber.handle_message("[]")
    transcriber.handle_message(json.dumps({"type": "Results", "channel": "oops", "is_final": True}))
    transcriber.handle_message(json.dumps({"type": "Results", "channel": {"alternatives": ["x"]}}))
    transcriber.handle_message(_results("hola", is_final=True, speech_final=True))

    assert received == [("hola", True)]


class FakeDeepgramSocket:
    """Async context manager and message iterator standing in for a live socket."""

    def __init__(self) -> None:
        self.sent: list[str | bytes] = []
        self.opened = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def __aenter__(self) -> FakeDeepgramSocket:
        self.opened = True
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    def __aiter__(self) -> FakeDeepgramSocket:
        return self

    async def __anext__(self) -> str:
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message

    def feed(self, message: str) -> None:
        self._incoming.put_nowait(message)

    async def send(self, data: str | bytes) -> None:
        self.sent.append(data)
        if isinstance(data, str) and json.loads(data).get("type") == "CloseStream":
            self._incoming.put_nowait(None)


def test_reconnects_after_failure_and_keeps_listening(monkeypatch) -> None:
    attempts: list[dict[str, str]] = []

    async def scenario():
        socket = FakeDeepgramSocket()

        def connect(url, *, additional_headers=None):
            attempts.append(additional_headers)
            if len(attempts) == 1:
                raise OSError("connection refused")
            return socket

        monkeypatch.setattr(transcriber_module.websockets, "connect", connect)
        received: list[tuple[str, bool]] = []
        transcriber = DeepgramTranscriber(api_key="dg-test", reconnect_delay=0)
        await transcriber.start(lambda text, is_final: received.append((text, is_final)))
        await wait_until(lambda: socket.opened)

        socket.feed("[]")
        socket.feed(json.dumps({"type": "Results", "channel": "oops"}))
        socket.feed(_results("quiero una cita", is_final=True, speech_final=True))
        await wait_until(lambda: received)
        transcriber.push_audio(b"\x7f" * 160)
        await wait_until(lambda: b"\x7f" * 160 in socket.sent)
        await transcriber.close()
        return transcriber, received

    transcriber, received = asyncio.run(scenario())

    assert len(attempts) == 2
    assert attempts[1] == {"Authorization": "Token dg-test"}
    assert received == [("quiero una cita", True)]
    assert "connection refused" in transcriber.last_error.detail


def test_close_sends_close_stream_and_is_idempotent(monkeypatch) -> None:
    async def scenario():
        socket = FakeDeepgramSocket()
        monkeypatch.setattr(
            transcriber_module.websockets, "connect", lambda url, *, additional_headers=None: socket
        )
        transcriber = DeepgramTranscriber(api_key="dg-test")
        await transcriber.start(lambda text, is_final: None)
        await wait_until(lambda: socket.opened)
        await transcriber.close()
        await transcriber.close()
        transcriber.push_audio(b"\x7f" * 160)
        return socket, transcriber

    socket, transcriber = asyncio.run(scenario())

    assert socket.sent == [json.dumps({"type": "CloseStream"})]
    assert transcriber._task.done()
    assert transcriber._task.exception() is None
