from __future__ import annotations

import base64
import json

import pytest

from telephony.events import AudioFrame, Mark, Started, Stopped
from telephony.twilio import TwilioMediaStream


def _start_message() -> str:
    return json.dumps(
        {
            "event": "start",
            "sequenceNumber": "1",
            "start": {
                "streamSid": "MZ123",
                "accountSid": "AC1",
                "callSid": "CA999",
                "tracks": ["inbound"],
                "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
                "customParameters": {"to": "+34910000000", "businessId": "biz-1"},
            },
            "streamSid": "MZ123",
        }
    )


def test_start_becomes_started_event() -> None:
    event = TwilioMediaStream().parse_message(_start_message())

    assert isinstance(event, Started)
    assert event.session_id == "CA999"
    assert event.stream_id == "MZ123"
    assert event.media_format.sample_rate == 8000
    assert event.parameters == {"to": "+34910000000", "businessId": "biz-1"}


def test_media_payload_is_decoded() -> None:
    raw = json.dumps(
        {
            "event": "media",
            "streamSid": "MZ123",
            "media": {"track": "inbound", "chunk": "2", "payload": base64.b64encode(b"\x7f\xff").decode()},
        }
    )
    event = TwilioMediaStream().parse_message(raw)

    assert event == AudioFrame(track="inbound", payload=b"\x7f\xff")


def test_mark_and_stop() -> None:
    protocol = TwilioMediaStream()

    assert protocol.parse_message('{"event": "mark", "mark": {"name": "speech_end"}}') == Mark("speech_end")
    assert protocol.parse_message('{"event": "stop", "stop": {"callSid": "CA999"}}') == Stopped("stop")


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        '{"event": "connected", "protocol": "Call", "version": "1.0.0"}',
        '{"event": "media", "media": {"payload": "%%%not-base64"}}',
        '{"event": "start"}',
        '{"event": "start", "start": {"callSid": "CA1"}}',
        '{"event": "something-new"}',
        b"\x00\x01\x02",
    ],
)
def test_unknown_or_malformed_messages_are_discarded(raw) -> None:
    assert TwilioMediaStream().parse_message(raw) is None


def test_outbound_messages_use_stream_sid() -> None:
    protocol = TwilioMediaStream()

    media = json.loads(protocol.media_message("MZ123", b"\xff\xff"))
    assert media == {"event": "media", "streamSid": "MZ123", "media": {"payload": "//8="}}
    assert json.loads(protocol.clear_message("MZ123")) == {"event": "clear", "streamSid": "MZ123"}
    assert json.loads(protocol.mark_message("MZ123", "speech_end"))["mark"] == {"name": "speech_end"}
