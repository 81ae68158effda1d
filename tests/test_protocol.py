import base64
import json
import struct

import pytest

from core.espgrow.exceptions import ParseError, TelemetryError
from core.espgrow.models import HistoryPoint
from core.espgrow.protocol import decode_frame, decode_telemetry, encode_frame, encode_telemetry


def pack(*records):
    return base64.b64encode(b"".join(struct.pack("<If", ts, value) for ts, value in records)).decode()


def test_encode_frame_omits_empty_data():
    assert json.loads(encode_frame("get_devices")) == {"type": "get_devices"}
    assert json.loads(encode_frame("get_devices", {})) == {"type": "get_devices"}


def test_encode_frame_with_data():
    text = encode_frame("device_control", {"method": "relay", "target": "5", "on": True})
    assert json.loads(text) == {
        "type": "device_control",
        "data": {"method": "relay", "target": "5", "on": True},
    }


def test_decode_frame_wrapped_and_flat():
    wrapped = decode_frame('{"type": "devices", "data": [{"id": "fan1"}]}')
    assert wrapped.type == "devices"
    assert wrapped.payload == [{"id": "fan1"}]

    flat = decode_frame('{"type": "device_status", "deviceId": "fan1", "on": true}')
    assert flat.data is None
    assert flat.payload["deviceId"] == "fan1"


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"data": 1}', '{"type": 5}', ""])
def test_decode_frame_rejects_malformed(raw):
    with pytest.raises(ParseError):
        decode_frame(raw)


def test_decode_telemetry_rounds_to_display_precision():
    points = decode_telemetry(pack((1700000000, 21.46), (1700000300, 21.44)))

    assert points == [
        HistoryPoint(timestamp=1700000000, value=21.5),
        HistoryPoint(timestamp=1700000300, value=21.4),
    ]


def test_decode_telemetry_drops_partial_trailing_record():
    raw = base64.b64decode(pack((1700000000, 20.0), (1700000060, 20.5)))
    points = decode_telemetry(base64.b64encode(raw[:13]).decode())

    assert points == [HistoryPoint(timestamp=1700000000, value=20.0)]


def test_decode_telemetry_short_buffer_is_empty():
    assert decode_telemetry(base64.b64encode(b"\x01\x02\x03").decode()) == []
    assert decode_telemetry("") == []


def test_decode_telemetry_skips_invalid_points():
    payload = pack(
        (0, 20.0),
        (1700000000, float("nan")),
        (1700000060, float("inf")),
        (1700000120, 19.0),
    )
    assert decode_telemetry(payload) == [HistoryPoint(timestamp=1700000120, value=19.0)]


def test_decode_telemetry_accepts_raw_bytes():
    raw = struct.pack("<If", 1700000000, 55.0)
    assert decode_telemetry(raw) == [HistoryPoint(timestamp=1700000000, value=55.0)]


def test_decode_telemetry_invalid_base64():
    with pytest.raises(TelemetryError):
        decode_telemetry("!!not base64!!")


def test_telemetry_error_is_a_parse_error():
    assert issubclass(TelemetryError, ParseError)


def test_reencoding_decoded_points_is_stable():
    points = decode_telemetry(pack((1700000000, 23.37), (1700000060, 23.31)))
    assert decode_telemetry(encode_telemetry(points)) == points


def test_empty_command_decodes_without_data():
    frame = decode_frame(encode_frame("ping"))
    assert frame.type == "ping"
    assert frame.data is None


def test_decode_telemetry_rounds_ties_up():
    points = decode_telemetry(pack((1700000000, 21.25), (1700000060, 0.25), (1700000120, -0.25)))

    assert [p.value for p in points] == [21.3, 0.3, -0.2]
