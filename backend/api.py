"""
EspGrow API Endpoints

Reads come straight from the local mirror. Writes send a command to the
controller and return 202; the mirror changes when the controller pushes
the updated collection.
"""

import asyncio
import os
import sys
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from loguru import logger
from pydantic import BaseModel

# Add core to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.espgrow.context import ControllerContext
from core.espgrow.controller_client import ControllerClient
from core.espgrow.exceptions import CommandTimeoutError, ControllerConnectionError, TelemetryError
from core.espgrow.models import (
    AutomationRule,
    ComparisonOperator,
    ControlMethod,
    DeviceType,
    DeviceUpdate,
    HistoryRange,
    RuleAction,
    RuleKind,
    RuleUpdate,
    SensorType,
    SensorUpdate,
)

router = APIRouter()

ACCEPTED = {"status": "accepted"}


def get_context(request: Request) -> ControllerContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="Controller sync not configured")
    return context


def get_controller_client(request: Request) -> ControllerClient:
    client = getattr(request.app.state, "controller_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Controller sync not configured")
    return client


# --- Request bodies ---------------------------------------------------------

class AddDeviceRequest(BaseModel):
    id: str
    name: str
    type: DeviceType
    control_method: ControlMethod
    ip_address: str


class UpdateDeviceRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[DeviceType] = None
    control_method: Optional[ControlMethod] = None
    ip_address: Optional[str] = None


class AddSensorRequest(BaseModel):
    id: str
    name: str
    type: SensorType
    unit: str
    hardware_type: str
    address: Optional[str] = None
    temp_source_id: Optional[str] = None
    hum_source_id: Optional[str] = None


class UpdateSensorRequest(BaseModel):
    name: Optional[str] = None
    type: Optional[SensorType] = None
    unit: Optional[str] = None
    hardware_type: Optional[str] = None
    address: Optional[str] = None
    temp_source_id: Optional[str] = None
    hum_source_id: Optional[str] = None


class AddRuleRequest(BaseModel):
    id: str
    name: str
    enabled: bool = True
    kind: RuleKind = RuleKind.SENSOR
    device_id: str
    action: RuleAction = RuleAction.TURN_ON
    sensor_id: Optional[str] = None
    operator: Optional[ComparisonOperator] = None
    threshold: Optional[float] = None
    threshold_off: Optional[float] = None
    use_hysteresis: bool = False
    min_run_time_ms: Optional[int] = None
    on_time: Optional[str] = None  # Local "HH:MM"
    off_time: Optional[str] = None


class UpdateRuleRequest(BaseModel):
    name: Optional[str] = None
    enabled: Optional[bool] = None
    kind: Optional[RuleKind] = None
    device_id: Optional[str] = None
    action: Optional[RuleAction] = None
    sensor_id: Optional[str] = None
    operator: Optional[ComparisonOperator] = None
    threshold: Optional[float] = None
    threshold_off: Optional[float] = None
    use_hysteresis: Optional[bool] = None
    min_run_time_ms: Optional[int] = None
    on_time: Optional[str] = None
    off_time: Optional[str] = None


class CalibratePpfdRequest(BaseModel):
    known_ppfd: float


class SetTimezoneRequest(BaseModel):
    offset_minutes: int


# --- Status -------------------------------------------------------------------

@router.get("/api/health")
async def health_check(request: Request):
    """Health check endpoint."""
    context = getattr(request.app.state, "context", None)
    return {
        "status": "healthy",
        "app": "EspGrow",
        "version": "0.1.0",
        "controller_configured": context is not None,
        "controller_connected": context.connected if context else False,
    }


@router.get("/api/status")
async def get_status(context: ControllerContext = Depends(get_context)):
    """Connection status for the UI connectivity indicator."""
    channel = context.channel
    return {
        "connection": channel.status.value,
        "controller_url": channel.url,
        "last_error": channel.last_error,
        "queued_commands": len(channel.queued),
        "latency_ms": context.system.latency_ms,
    }


# --- Devices ------------------------------------------------------------------

def _device_view(context: ControllerContext, device) -> dict[str, Any]:
    expiry = context.devices.override_expiry(device.id)
    return {
        **asdict(device),
        "target": device.target,
        "pending": context.devices.is_pending(device.id),
        "override_until": expiry.isoformat() if expiry else None,
    }


@router.get("/api/devices")
async def get_devices(context: ControllerContext = Depends(get_context)):
    """Get all devices with pending and override state."""
    return {
        "devices": [_device_view(context, d) for d in context.devices.devices],
        "last_error": context.devices.last_error,
    }


@router.post("/api/devices/{device_id}/toggle", status_code=202)
async def toggle_device(device_id: str, context: ControllerContext = Depends(get_context)):
    """Request an on/off flip. The state changes once the controller confirms."""
    if context.devices.get(device_id) is None:
        raise HTTPException(status_code=404, detail=f"Device not found: {device_id}")
    if not context.devices.toggle(device_id):
        raise HTTPException(status_code=409, detail=f"Toggle already pending: {device_id}")
    return {"device_id": device_id, "pending": True}


@router.post("/api/devices", status_code=202)
async def add_device(body: AddDeviceRequest, context: ControllerContext = Depends(get_context)):
    context.devices.add_device(body.id, body.name, body.type, body.control_method, body.ip_address)
    return ACCEPTED


@router.patch("/api/devices/{device_id}", status_code=202)
async def update_device(
    device_id: str,
    body: UpdateDeviceRequest,
    context: ControllerContext = Depends(get_context),
):
    if context.devices.get(device_id) is None:
        raise HTTPException(status_code=404, detail=f"Device not found: {device_id}")
    context.devices.update_device(device_id, DeviceUpdate(**body.model_dump()))
    return ACCEPTED


@router.delete("/api/devices/{device_id}", status_code=202)
async def remove_device(device_id: str, context: ControllerContext = Depends(get_context)):
    context.devices.remove_device(device_id)
    return ACCEPTED


# --- Sensors ------------------------------------------------------------------

@router.get("/api/sensors")
async def get_sensors(context: ControllerContext = Depends(get_context)):
    """Get configured sensors with their latest reading."""
    sensors = []
    for sensor in context.sensors.sensors:
        reading = context.sensors.get_reading(sensor.id)
        sensors.append({
            **asdict(sensor),
            "value": reading.value if reading else None,
            "timestamp": reading.timestamp.isoformat() if reading else None,
        })
    return {"sensors": sensors}


@router.get("/api/sensors/{sensor_id}/history")
async def get_sensor_history(
    sensor_id: str,
    range: HistoryRange = HistoryRange.MEDIUM,
    context: ControllerContext = Depends(get_context),
):
    """Fetch a history window from the controller.

    Args:
        sensor_id: Sensor identifier
        range: "12h", "24h" or "7d"
    """
    if context.sensors.get(sensor_id) is None:
        raise HTTPException(status_code=404, detail=f"Sensor not found: {sensor_id}")

    try:
        series = await context.sensors.fetch_history(sensor_id, range)
    except CommandTimeoutError as e:
        logger.warning(f"History fetch failed: {e}")
        raise HTTPException(status_code=504, detail=str(e)) from e
    except TelemetryError as e:
        logger.warning(f"History payload rejected: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e

    return {
        "sensor_id": sensor_id,
        "range": series.range.value,
        "count": len(series.points),
        "history": [{"timestamp": p.timestamp, "value": p.value} for p in series.points],
    }


@router.post("/api/sensors", status_code=202)
async def add_sensor(body: AddSensorRequest, context: ControllerContext = Depends(get_context)):
    context.sensors.add_sensor(
        body.id,
        body.name,
        body.type,
        body.unit,
        body.hardware_type,
        address=body.address,
        temp_source_id=body.temp_source_id,
        hum_source_id=body.hum_source_id,
    )
    return ACCEPTED


@router.patch("/api/sensors/{sensor_id}", status_code=202)
async def update_sensor(
    sensor_id: str,
    body: UpdateSensorRequest,
    context: ControllerContext = Depends(get_context),
):
    if context.sensors.get(sensor_id) is None:
        raise HTTPException(status_code=404, detail=f"Sensor not found: {sensor_id}")
    context.sensors.update_sensor(sensor_id, SensorUpdate(**body.model_dump()))
    return ACCEPTED


@router.delete("/api/sensors/{sensor_id}", status_code=202)
async def remove_sensor(sensor_id: str, context: ControllerContext = Depends(get_context)):
    context.sensors.remove_sensor(sensor_id)
    return ACCEPTED


@router.get("/api/calibration/ppfd")
async def get_ppfd_calibration(context: ControllerContext = Depends(get_context)):
    context.sensors.request_ppfd_calibration()
    return {
        "factor": context.sensors.ppfd_factor,
        "error": context.sensors.calibration_error,
    }


@router.post("/api/calibration/ppfd", status_code=202)
async def calibrate_ppfd(body: CalibratePpfdRequest, context: ControllerContext = Depends(get_context)):
    context.sensors.calibrate_ppfd(body.known_ppfd)
    return ACCEPTED


@router.post("/api/calibration/ppfd/reset", status_code=202)
async def reset_ppfd_calibration(context: ControllerContext = Depends(get_context)):
    context.sensors.reset_ppfd_calibration()
    return ACCEPTED


# --- Rules --------------------------------------------------------------------

@router.get("/api/rules")
async def get_rules(context: ControllerContext = Depends(get_context)):
    """Get automation rules. Schedule times are local wall clock."""
    return {"rules": [asdict(r) for r in context.rules.rules]}


@router.post("/api/rules", status_code=202)
async def add_rule(body: AddRuleRequest, context: ControllerContext = Depends(get_context)):
    try:
        context.rules.add_rule(AutomationRule(**body.model_dump()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return ACCEPTED


@router.patch("/api/rules/{rule_id}", status_code=202)
async def update_rule(
    rule_id: str,
    body: UpdateRuleRequest,
    context: ControllerContext = Depends(get_context),
):
    if context.rules.get(rule_id) is None:
        raise HTTPException(status_code=404, detail=f"Rule not found: {rule_id}")
    try:
        context.rules.update_rule(rule_id, RuleUpdate(**body.model_dump()))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return ACCEPTED


@router.delete("/api/rules/{rule_id}", status_code=202)
async def remove_rule(rule_id: str, context: ControllerContext = Depends(get_context)):
    context.rules.remove_rule(rule_id)
    return ACCEPTED


@router.post("/api/rules/{rule_id}/toggle", status_code=202)
async def toggle_rule(rule_id: str, context: ControllerContext = Depends(get_context)):
    if context.rules.get(rule_id) is None:
        raise HTTPException(status_code=404, detail=f"Rule not found: {rule_id}")
    context.rules.toggle_rule(rule_id)
    return ACCEPTED


# --- Controller settings and system -------------------------------------------

@router.get("/api/settings/timezone")
async def get_timezone(context: ControllerContext = Depends(get_context)):
    return {"offset_minutes": context.controller_settings.timezone_offset_minutes}


@router.put("/api/settings/timezone", status_code=202)
async def set_timezone(body: SetTimezoneRequest, context: ControllerContext = Depends(get_context)):
    context.controller_settings.set_timezone(body.offset_minutes)
    return ACCEPTED


@router.post("/api/settings/timezone/sync", status_code=202)
async def sync_timezone(context: ControllerContext = Depends(get_context)):
    offset = context.controller_settings.sync_timezone()
    return {"status": "accepted", "offset_minutes": offset}


@router.get("/api/system")
async def get_system(context: ControllerContext = Depends(get_context)):
    """Controller system info and firmware update status."""
    system = context.system
    return {
        "info": asdict(system.info) if system.info else None,
        "ota": asdict(system.ota) if system.ota else None,
        "latency_ms": system.latency_ms,
    }


@router.post("/api/system/refresh", status_code=202)
async def refresh_system(context: ControllerContext = Depends(get_context)):
    context.system.request_system_info()
    context.system.ping()
    return ACCEPTED


# --- Config backup ------------------------------------------------------------

@router.get("/api/config/backup")
async def backup_config(client: ControllerClient = Depends(get_controller_client)):
    """Download the controller configuration bundle."""
    try:
        return await asyncio.to_thread(client.backup)
    except ControllerConnectionError as e:
        logger.error(f"Backup failed: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e


@router.post("/api/config/restore")
async def restore_config(
    bundle: dict[str, Any],
    client: ControllerClient = Depends(get_controller_client),
):
    """Upload a configuration bundle to the controller."""
    try:
        await asyncio.to_thread(client.restore, bundle)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ControllerConnectionError as e:
        logger.error(f"Restore failed: {e}")
        raise HTTPException(status_code=502, detail=str(e)) from e
    return {"success": True}
