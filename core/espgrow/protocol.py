"""
Wire Codec

JSON envelope used on the controller channel plus the packed binary format
the controller uses for history telemetry.

Envelope:   {"type": "<string>", "data": <any>}   ("data" omitted when empty)
Telemetry:  repeated little-endian (uint32 timestamp_seconds, float32 value),
            8 bytes per point, base64 encoded inside the JSON frame.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

import numpy as np

from .exceptions import ParseError, TelemetryError
from .models import HistoryPoint

POINT_SIZE = 8
POINT_DTYPE = np.dtype([("timestamp", "<u4"), ("value", "<f4")])
DISPLAY_DECIMALS = 1


@dataclass
class EventFrame:
    """A decoded inbound frame."""

    type: str
    data: Any = None
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def payload(self) -> Any:
        """What subscribers receive.

        The ``data`` member when it carries a structured value, otherwise the
        whole frame. The controller sends some pushes flat
        (``{"type": "device_status", "deviceId": ...}``) and some wrapped.
        """
        if isinstance(self.data, (dict, list)):
            return self.data
        return self.fields


def encode_frame(type: str, data: Optional[dict[str, Any]] = None) -> str:
    """Encode an outbound command frame as JSON text."""
    frame: dict[str, Any] = {"type": type}
    if data:
        frame["data"] = data
    return json.dumps(frame, separators=(",", ":"))


def decode_frame(raw: Union[str, bytes]) -> EventFrame:
    """Decode an inbound frame.

    Raises:
        ParseError: If the text is not JSON or has no string ``type``
    """
    try:
        message = json.loads(raw)
    except (ValueError, TypeError) as e:
        raise ParseError(f"Invalid JSON frame: {e}") from e

    if not isinstance(message, dict):
        raise ParseError("Frame is not a JSON object")

    frame_type = message.get("type")
    if not isinstance(frame_type, str):
        raise ParseError("Frame has no string 'type'")

    return EventFrame(type=frame_type, data=message.get("data"), fields=message)


def decode_telemetry(payload: Union[str, bytes, bytearray]) -> list[HistoryPoint]:
    """Decode a packed telemetry buffer into history points.

    Trailing bytes that do not form a whole record are ignored. Records with a
    zero timestamp or a non-finite value are skipped. Values are rounded half
    up to one decimal, the display precision of every history series.

    Args:
        payload: Base64 text as sent in the JSON frame, or the raw bytes

    Raises:
        TelemetryError: If the base64 text is invalid
    """
    if isinstance(payload, str):
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise TelemetryError(f"Invalid base64 telemetry payload: {e}") from e
    else:
        raw = bytes(payload)

    usable = len(raw) - len(raw) % POINT_SIZE
    records = np.frombuffer(raw[:usable], dtype=POINT_DTYPE)

    valid = records[(records["timestamp"] > 0) & np.isfinite(records["value"])]
    scale = 10 ** DISPLAY_DECIMALS
    values = np.floor(valid["value"].astype(np.float64) * scale + 0.5) / scale

    return [
        HistoryPoint(timestamp=int(ts), value=float(value))
        for ts, value in zip(valid["timestamp"], values)
    ]


def encode_telemetry(points: Iterable[HistoryPoint]) -> str:
    """Pack history points the way the controller does and base64 encode them."""
    points = list(points)
    records = np.zeros(len(points), dtype=POINT_DTYPE)
    for i, point in enumerate(points):
        records[i] = (point.timestamp, point.value)
    return base64.b64encode(records.tobytes()).decode("ascii")
