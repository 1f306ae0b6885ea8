from __future__ import annotations

import asyncio
import base64

import pytest

from conversation.errors import TransportClosed, TransportError
from fakes import RecordingSocket, wait_until
from telephony.events import MediaFormat
from telephony.transport import MediaStreamTransport
from telephony.twilio import TwilioMediaStream


def _run(coro):
    return asyncio.run(coro)


def test_audio_is_sent_in_call_order() -> None:
    async def scenario() -> list[str]:
        socket = RecordingSocket()
        transport = MediaStreamTransport(TwilioMediaStream(), socket.send_text, pace=False)
        transport.bind("MZ1")
        for index in range(20):
            await transport.send_audio(bytes([index]) * 160)
        await transport.send_mark("speech_end")
        await transport.wait_flushed()
        await transport.close()
        return [message.get("media", {}).get("payload", message["event"]) for message in socket.sent]

    sent = _run(scenario())

    assert [base64.b64decode(payload)[0] for payload in sent[:-1]] == list(range(20))
    assert sent[-1] == "mark"


def test_clear_drops_unsent_audio_before_queueing_clear() -> None:
    async def scenario() -> list[str]:
        socket = RecordingSocket()
        # Pacing at 20 ms per frame keeps most frames queued.
        transport = MediaStreamTransport(TwilioMediaStream(), socket.send_text, pace=True)
        transport.bind("MZ1", MediaFormat())
        for _ in range(50):
            await transport.send_audio(b"\xff" * 160)
        await asyncio.sleep(0.03)
        await transport.send_clear()
        await transport.send_audio(b"\x00" * 160)
        await transport.wait_flushed()
        await transport.close()
        return socket.events()

    events = _run(scenario())

    assert events.count("clear") == 1
    assert events.count("media") < 10
    assert events[-2:] == ["clear", "media"]


def test_send_failure_is_reported_once_and_closes_transport() -> None:
    async def scenario():
        socket = RecordingSocket(fail_after=2)
        errors: list[TransportError] = []
        transport = MediaStreamTransport(TwilioMediaStream(), socket.send_text, pace=False)
        transport.set_error_handler(errors.append)
        transport.bind("MZ1")
        for _ in range(5):
            await transport.send_audio(b"\xff" * 160)
        await wait_until(lambda: bool(errors))
        with pytest.raises(TransportClosed):
            await transport.send_audio(b"\xff" * 160)
        await transport.close()
        return socket, errors, transport

    socket, errors, transport = _run(scenario())

    assert len(socket.sent) == 2
    assert len(errors) == 1
    assert transport.closed


def test_sending_before_start_is_an_error() -> None:
    async def scenario() -> None:
        transport = MediaStreamTransport(TwilioMediaStream(), RecordingSocket().send_text)
        with pytest.raises(TransportError):
            await transport.send_clear()
        await transport.close()
        with pytest.raises(TransportClosed):
            await transport.send_audio(b"\xff")

    _run(scenario())
