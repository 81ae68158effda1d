"""
Sensor Store

Sensor configuration, latest readings, fetched history windows and the PPFD
light sensor calibration, all mirrored from the controller.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from .channel import ChannelManager
from .exceptions import CommandTimeoutError, TelemetryError
from .messages import (
    HistoryMessage,
    PpfdCalibrationMessage,
    ReadingRecord,
    SensorRecord,
    parse_collection,
)
from .models import (
    HistoryRange,
    HistorySeries,
    Sensor,
    SensorReading,
    SensorType,
    SensorUpdate,
)
from .protocol import POINT_SIZE, decode_telemetry

logger = logging.getLogger(__name__)


class SensorStore:
    """Controller sensors, readings and history."""

    def __init__(self, channel: ChannelManager, history_timeout: float = 5.0):
        self.channel = channel
        self.history_timeout = history_timeout

        self.sensors: list[Sensor] = []
        self.readings: dict[str, SensorReading] = {}
        self.history: dict[tuple[str, HistoryRange], HistorySeries] = {}

        self.ppfd_factor: Optional[float] = None
        self.calibration_error: Optional[str] = None

        self._history_waiters: dict[tuple[str, HistoryRange], list[asyncio.Future]] = {}

        channel.subscribe("sensor_config", self._on_sensor_config)
        channel.subscribe("sensors", self._on_readings)
        channel.subscribe("history", self._on_history, schema=HistoryMessage)
        channel.subscribe("ppfd_calibration", self._on_ppfd_calibration, schema=PpfdCalibrationMessage)

    def get(self, sensor_id: str) -> Optional[Sensor]:
        return next((s for s in self.sensors if s.id == sensor_id), None)

    def get_reading(self, sensor_id: str) -> Optional[SensorReading]:
        return self.readings.get(sensor_id)

    def get_history(self, sensor_id: str, range: HistoryRange) -> Optional[HistorySeries]:
        return self.history.get((sensor_id, HistoryRange(range)))

    # --- Commands -----------------------------------------------------------

    def request_sensors(self) -> None:
        self.channel.send("get_sensors")

    def request_history(self, sensor_id: str, range: HistoryRange) -> None:
        self.channel.send("get_history", {"sensorId": sensor_id, "range": HistoryRange(range).value})

    async def fetch_history(
        self,
        sensor_id: str,
        range: HistoryRange,
        timeout: Optional[float] = None,
    ) -> HistorySeries:
        """Request a history window and wait for the controller's answer.

        Raises:
            CommandTimeoutError: If no matching history frame arrives in time
            TelemetryError: If the answer carries an undecodable payload
        """
        key = (sensor_id, HistoryRange(range))
        future = asyncio.get_running_loop().create_future()
        self._history_waiters.setdefault(key, []).append(future)
        self.request_history(sensor_id, key[1])

        try:
            return await asyncio.wait_for(
                future, self.history_timeout if timeout is None else timeout
            )
        except asyncio.TimeoutError:
            raise CommandTimeoutError(f"No {key[1].value} history for {sensor_id}") from None
        finally:
            waiters = self._history_waiters.get(key)
            if waiters and future in waiters:
                waiters.remove(future)
            if not waiters:
                self._history_waiters.pop(key, None)

    def add_sensor(
        self,
        sensor_id: str,
        name: str,
        sensor_type: SensorType,
        unit: str,
        hardware_type: str,
        address: Optional[str] = None,
        temp_source_id: Optional[str] = None,
        hum_source_id: Optional[str] = None,
    ) -> None:
        self.channel.send("add_sensor", {
            "id": sensor_id,
            "name": name,
            "sensorType": SensorType(sensor_type).value,
            "unit": unit,
            "hardwareType": hardware_type,
            "address": address or "",
            "tempSourceId": temp_source_id or "",
            "humSourceId": hum_source_id or "",
        })

    def update_sensor(self, sensor_id: str, update: SensorUpdate) -> None:
        self.channel.send("update_sensor", {"id": sensor_id, **update.to_wire()})

    def remove_sensor(self, sensor_id: str) -> None:
        self.channel.send("remove_sensor", {"id": sensor_id})

    def request_ppfd_calibration(self) -> None:
        self.channel.send("get_ppfd_calibration")

    def calibrate_ppfd(self, known_ppfd: float) -> None:
        """Calibrate the light sensor against a reference PPFD value."""
        self.channel.send("calibrate_ppfd", {"knownPpfd": known_ppfd})

    def reset_ppfd_calibration(self) -> None:
        self.channel.send("reset_ppfd_calibration")

    # --- Push handlers ------------------------------------------------------

    def _on_sensor_config(self, payload) -> None:
        records = parse_collection(payload, SensorRecord)
        self.sensors = [r.to_model() for r in records]

        known = {s.id for s in self.sensors}
        self.readings = {k: v for k, v in self.readings.items() if k in known}
        self.history = {k: v for k, v in self.history.items() if k[0] in known}
        logger.debug(f"Sensor config replaced ({len(self.sensors)} sensors)")

    def _on_readings(self, payload) -> None:
        timestamp = datetime.now(timezone.utc)
        for record in parse_collection(payload, ReadingRecord):
            self.readings[record.id] = SensorReading(
                sensor_id=record.id,
                value=record.value,
                timestamp=timestamp,
                sensor_type=record.type,
            )

    def _on_history(self, msg: HistoryMessage) -> None:
        key = (msg.sensor_id, msg.range)
        try:
            if msg.point_size != POINT_SIZE:
                raise TelemetryError(f"Unsupported history point size {msg.point_size}")
            points = decode_telemetry(msg.encoded)
        except TelemetryError as e:
            for future in self._history_waiters.pop(key, []):
                if not future.done():
                    future.set_exception(e)
            raise

        series = HistorySeries(
            sensor_id=msg.sensor_id,
            range=msg.range,
            points=points,
            fetched_at=datetime.now(timezone.utc),
        )
        self.history[key] = series

        if msg.count is not None and msg.count != len(points):
            logger.debug(f"History {msg.sensor_id}/{msg.range.value}: {msg.count} sent, {len(points)} valid")

        for future in self._history_waiters.pop(key, []):
            if not future.done():
                future.set_result(series)

    def _on_ppfd_calibration(self, msg: PpfdCalibrationMessage) -> None:
        if msg.success is False:
            self.calibration_error = msg.error or "calibration failed"
            logger.warning(f"PPFD calibration rejected: {self.calibration_error}")
            return

        if msg.factor is not None:
            self.ppfd_factor = msg.factor
        self.calibration_error = None
