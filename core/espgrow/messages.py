"""
Push Message Schemas

One pydantic model per controller push type. Field names follow the
controller's camelCase JSON; payloads that do not match are dropped by the
channel the same way malformed JSON is.
"""

import logging
from typing import Any, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import ParseError
from .models import (
    AutomationRule,
    ComparisonOperator,
    ControlMethod,
    ControlMode,
    Device,
    DeviceType,
    HistoryRange,
    OtaStatus,
    RuleAction,
    RuleKind,
    Sensor,
    SensorType,
    SystemInfo,
)

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# --- Collection elements ---------------------------------------------------

class DeviceRecord(WireModel):
    id: str = Field(min_length=1)
    name: str
    type: DeviceType
    control_method: ControlMethod
    ip_address: Optional[str] = None
    gpio_pin: Optional[int] = None
    is_on: bool = False
    control_mode: ControlMode = ControlMode.MANUAL

    def to_model(self) -> Device:
        return Device(
            id=self.id,
            name=self.name,
            type=self.type,
            control_method=self.control_method,
            ip_address=self.ip_address or None,
            gpio_pin=self.gpio_pin,
            is_on=self.is_on,
            control_mode=self.control_mode,
        )


class SensorRecord(WireModel):
    id: str = Field(min_length=1)
    name: str
    type: SensorType
    unit: str = ""
    hardware_type: str = ""
    address: Optional[str] = None
    temp_source_id: Optional[str] = None
    hum_source_id: Optional[str] = None

    def to_model(self) -> Sensor:
        return Sensor(
            id=self.id,
            name=self.name,
            type=self.type,
            unit=self.unit,
            hardware_type=self.hardware_type,
            address=self.address or None,
            temp_source_id=self.temp_source_id or None,
            hum_source_id=self.hum_source_id or None,
        )


class RuleRecord(WireModel):
    """Rule as stored on the controller. Schedule times are UTC."""

    id: str = Field(min_length=1)
    name: str
    enabled: bool = True
    kind: Optional[RuleKind] = Field(
        default=None, validation_alias=AliasChoices("type", "ruleType", "kind")
    )
    sensor_id: Optional[str] = None
    operator: Optional[ComparisonOperator] = None
    threshold: Optional[float] = None
    threshold_off: Optional[float] = None
    use_hysteresis: bool = False
    min_run_time_ms: Optional[int] = None
    on_time: Optional[str] = None
    off_time: Optional[str] = None
    device_id: str
    action: RuleAction = RuleAction.TURN_ON

    def to_model(self) -> AutomationRule:
        kind = self.kind
        if kind is None:
            kind = RuleKind.SCHEDULE if self.on_time else RuleKind.SENSOR
        return AutomationRule(
            id=self.id,
            name=self.name,
            enabled=self.enabled,
            kind=kind,
            device_id=self.device_id,
            action=self.action,
            sensor_id=self.sensor_id or None,
            operator=self.operator,
            threshold=self.threshold,
            threshold_off=self.threshold_off,
            use_hysteresis=self.use_hysteresis,
            min_run_time_ms=self.min_run_time_ms,
            on_time=self.on_time,
            off_time=self.off_time,
        )


class ReadingRecord(WireModel):
    id: str = Field(min_length=1)
    type: Optional[str] = None
    value: float


# --- Single-object pushes -----------------------------------------------------

class DeviceStatusMessage(WireModel):
    device_id: Optional[str] = None
    target: Optional[str] = None
    on: bool
    success: bool = True
    override_active: Optional[bool] = None
    override_remaining_ms: Optional[int] = None


class OverrideClearedMessage(WireModel):
    device_id: str


class HistoryMessage(WireModel):
    sensor_id: str
    range: HistoryRange
    payload: Optional[str] = None
    data: Optional[str] = None  # Flat form: base64 text under "data"
    count: Optional[int] = None
    point_size: int = 8

    @property
    def encoded(self) -> str:
        return self.payload or self.data or ""


class PongMessage(WireModel):
    timestamp: Optional[int] = None


class PpfdCalibrationMessage(WireModel):
    factor: Optional[float] = None
    success: Optional[bool] = None
    error: Optional[str] = None


class SettingsMessage(WireModel):
    timezone_offset_minutes: int


class SystemInfoMessage(WireModel):
    uptime: int
    free_heap: int
    chip_model: str
    wifi_rssi: int
    ip_address: str
    firmware_version: str

    def to_model(self) -> SystemInfo:
        return SystemInfo(**self.model_dump())


class OtaStatusMessage(WireModel):
    status: str
    progress: Optional[int] = None
    error: Optional[str] = None

    def to_model(self) -> OtaStatus:
        return OtaStatus(status=self.status, progress=self.progress, error=self.error)


def parse_collection(payload: Any, record_type: type[RecordT]) -> list[RecordT]:
    """Validate a pushed collection element by element.

    Elements that do not match the schema are skipped, the rest are kept.

    Raises:
        ParseError: If the payload is not a list at all
    """
    if not isinstance(payload, list):
        raise ParseError(f"Expected a list of {record_type.__name__}, got {type(payload).__name__}")

    records = []
    for item in payload:
        try:
            records.append(record_type.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Skipping invalid {record_type.__name__}: {e.error_count()} error(s) in {item!r}")
    return records
