"""
EspGrow Data Models

Local mirrors of the controller-side collections. The controller owns the
truth; these objects are replaced whenever it pushes a new snapshot.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DeviceType(str, Enum):
    FAN = "fan"
    LIGHT = "light"
    HEATER = "heater"
    PUMP = "pump"
    HUMIDIFIER = "humidifier"
    DEHUMIDIFIER = "dehumidifier"


class ControlMethod(str, Enum):
    RELAY = "relay"
    SHELLY_GEN1 = "shelly_gen1"
    SHELLY_GEN2 = "shelly_gen2"
    TASMOTA = "tasmota"


class ControlMode(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class SensorType(str, Enum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    CO2 = "co2"
    LIGHT = "light"
    VPD = "vpd"


class RuleKind(str, Enum):
    SENSOR = "sensor"
    SCHEDULE = "schedule"


class RuleAction(str, Enum):
    TURN_ON = "turn_on"
    TURN_OFF = "turn_off"


class ComparisonOperator(str, Enum):
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    EQ = "="


class HistoryRange(str, Enum):
    """Time windows the controller keeps history for."""

    SHORT = "12h"
    MEDIUM = "24h"
    LONG = "7d"


@dataclass
class Device:
    """A controllable actuator (fan, light, ...)."""

    id: str
    name: str
    type: DeviceType
    control_method: ControlMethod
    ip_address: Optional[str] = None  # IP for network plugs, pin number for relays
    gpio_pin: Optional[int] = None  # Legacy relay field
    is_on: bool = False
    control_mode: ControlMode = ControlMode.MANUAL

    @property
    def target(self) -> Optional[str]:
        """Address the controller uses to switch this device."""
        if self.ip_address:
            return self.ip_address
        if self.gpio_pin is not None:
            return str(self.gpio_pin)
        return None


@dataclass
class Sensor:
    """A measurement source configured on the controller."""

    id: str
    name: str
    type: SensorType
    unit: str
    hardware_type: str
    address: Optional[str] = None
    temp_source_id: Optional[str] = None  # Derived sensors (VPD) only
    hum_source_id: Optional[str] = None


@dataclass
class SensorReading:
    """Latest value pushed for a sensor. Never historical."""

    sensor_id: str
    value: float
    timestamp: datetime
    sensor_type: Optional[str] = None


@dataclass(frozen=True)
class HistoryPoint:
    timestamp: int  # Seconds since epoch
    value: float


@dataclass
class HistorySeries:
    """One fetched history window for one sensor."""

    sensor_id: str
    range: HistoryRange
    points: list[HistoryPoint]
    fetched_at: datetime


@dataclass
class AutomationRule:
    """Controller-side rule. Schedule times are local wall clock ("HH:MM")."""

    id: str
    name: str
    enabled: bool
    kind: RuleKind
    device_id: str
    action: RuleAction
    sensor_id: Optional[str] = None
    operator: Optional[ComparisonOperator] = None
    threshold: Optional[float] = None
    threshold_off: Optional[float] = None
    use_hysteresis: bool = False
    min_run_time_ms: Optional[int] = None
    on_time: Optional[str] = None
    off_time: Optional[str] = None


@dataclass
class SystemInfo:
    uptime: int
    free_heap: int
    chip_model: str
    wifi_rssi: int
    ip_address: str
    firmware_version: str


@dataclass
class OtaStatus:
    """Firmware update progress reported by the controller."""

    status: str
    progress: Optional[int] = None
    error: Optional[str] = None


# Field updates: every attribute left as None is not sent.

def _set_fields(update, wire_names: dict[str, str]) -> dict[str, Any]:
    payload = {}
    for f in fields(update):
        value = getattr(update, f.name)
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        payload[wire_names.get(f.name, f.name)] = value
    return payload


@dataclass
class DeviceUpdate:
    name: Optional[str] = None
    type: Optional[DeviceType] = None
    control_method: Optional[ControlMethod] = None
    ip_address: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        return _set_fields(self, {
            "type": "deviceType",
            "control_method": "controlMethod",
            "ip_address": "ipAddress",
        })


@dataclass
class SensorUpdate:
    name: Optional[str] = None
    type: Optional[SensorType] = None
    unit: Optional[str] = None
    hardware_type: Optional[str] = None
    address: Optional[str] = None
    temp_source_id: Optional[str] = None
    hum_source_id: Optional[str] = None

    def to_wire(self) -> dict[str, Any]:
        return _set_fields(self, {
            "type": "sensorType",
            "hardware_type": "hardwareType",
            "temp_source_id": "tempSourceId",
            "hum_source_id": "humSourceId",
        })


@dataclass
class RuleUpdate:
    name: Optional[str] = None
    enabled: Optional[bool] = None
    kind: Optional[RuleKind] = None
    sensor_id: Optional[str] = None
    operator: Optional[ComparisonOperator] = None
    threshold: Optional[float] = None
    threshold_off: Optional[float] = None
    use_hysteresis: Optional[bool] = None
    min_run_time_ms: Optional[int] = None
    on_time: Optional[str] = None
    off_time: Optional[str] = None
    device_id: Optional[str] = None
    action: Optional[RuleAction] = None

    def to_wire(self) -> dict[str, Any]:
        return _set_fields(self, RULE_WIRE_NAMES)


RULE_WIRE_NAMES = {
    "kind": "ruleType",
    "sensor_id": "sensorId",
    "threshold_off": "thresholdOff",
    "use_hysteresis": "useHysteresis",
    "min_run_time_ms": "minRunTimeMs",
    "on_time": "onTime",
    "off_time": "offTime",
    "device_id": "deviceId",
}
