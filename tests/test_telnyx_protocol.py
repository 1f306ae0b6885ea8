from __future__ import annotations

import base64
import json

from telephony.events import AudioFrame, Started, Stopped, StreamError
from telephony.telnyx import TelnyxMediaStream, decode_client_state


def _client_state(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode()).decode()


def test_start_carries_business_from_client_state() -> None:
    raw = json.dumps(
        {
            "event": "start",
            "sequence_number": "1",
            "start": {
                "call_control_id": "v3:abc",
                "stream_id": "st-1",
                "client_state": _client_state(
                    {"businessId": "biz-7", "businessName": "Peluquería Ana", "calendarConnectionId": None}
                ),
                "media_format": {"encoding": "PCMU", "sample_rate": 8000, "channels": 1},
            },
            "stream_id": "st-1",
        }
    )
    event = TelnyxMediaStream().parse_message(raw)

    assert isinstance(event, Started)
    assert event.session_id == "v3:abc"
    assert event.stream_id == "st-1"
    assert event.media_format.encoding == "PCMU"
    assert event.parameters == {"businessId": "biz-7", "businessName": "Peluquería Ana"}


def test_binary_frames_are_inbound_audio() -> None:
    assert TelnyxMediaStream().parse_message(b"\xff" * 160) == AudioFrame("inbound", b"\xff" * 160)
    assert TelnyxMediaStream().parse_message(b"") is None


def test_stop_and_error() -> None:
    protocol = TelnyxMediaStream()

    assert protocol.parse_message('{"event": "stop", "stream_id": "st-1"}') == Stopped("stop")
    error = protocol.parse_message(
        '{"event": "error", "payload": {}, "error": {"code": 100002, "message": "Unknown error"}}'
    )
    assert error == StreamError("Unknown error (100002)")


def test_undecodable_client_state_is_ignored() -> None:
    assert decode_client_state("!!!") == {}
    assert decode_client_state(base64.b64encode(b"[1, 2]").decode()) == {}
    assert decode_client_state(None) == {}


def test_outbound_messages_use_stream_id() -> None:
    protocol = TelnyxMediaStream()

    assert json.loads(protocol.clear_message("st-1")) == {"event": "clear", "stream_id": "st-1"}
    media = json.loads(protocol.media_message("st-1", b"\x00"))
    assert media["stream_id"] == "st-1"
    assert base64.b64decode(media["media"]["payload"]) == b"\x00"
