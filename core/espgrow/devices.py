"""
Device Store

Mirror of the controller's actuators plus the optimistic control state:

- pending: device ids with a toggle sent but not yet confirmed. The on/off
  flag itself only changes when the controller confirms.
- overrides: device id -> expiry of a controller-side manual override,
  after which the controller returns the device to rule control.

Confirmations are matched by device id (or target address), not by request,
so toggles of different devices may be confirmed in any order.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .channel import ChannelManager
from .messages import (
    DeviceRecord,
    DeviceStatusMessage,
    OverrideClearedMessage,
    parse_collection,
)
from .models import ControlMethod, Device, DeviceType, DeviceUpdate

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceStore:
    """Controller devices with optimistic toggle tracking."""

    def __init__(
        self,
        channel: ChannelManager,
        toggle_timeout: Optional[float] = 5.0,
        now: Callable[[], datetime] = _utcnow,
    ):
        """Initialize device store.

        Args:
            channel: Shared controller channel
            toggle_timeout: Seconds after which an unconfirmed toggle stops
                blocking new toggles of the same device (None disables)
            now: Wall clock used for override expiry
        """
        self.channel = channel
        self.toggle_timeout = toggle_timeout
        self._now = now

        self.devices: list[Device] = []
        self.pending: set[str] = set()
        self.overrides: dict[str, datetime] = {}
        self.last_error: Optional[str] = None

        self._toggle_timers: dict[str, asyncio.TimerHandle] = {}

        channel.subscribe("devices", self._on_devices)
        channel.subscribe("device_status", self._on_device_status, schema=DeviceStatusMessage)
        channel.subscribe("override_cleared", self._on_override_cleared, schema=OverrideClearedMessage)

    # --- Queries ------------------------------------------------------------

    def get(self, device_id: str) -> Optional[Device]:
        return next((d for d in self.devices if d.id == device_id), None)

    def find_by_target(self, target: str) -> Optional[Device]:
        return next((d for d in self.devices if d.target == target), None)

    def is_pending(self, device_id: str) -> bool:
        return device_id in self.pending

    def override_expiry(self, device_id: str) -> Optional[datetime]:
        """Expiry of an active override, None when there is none."""
        expiry = self.overrides.get(device_id)
        if expiry is None:
            return None
        if expiry <= self._now():
            del self.overrides[device_id]
            return None
        return expiry

    def override_remaining(self, device_id: str) -> Optional[float]:
        """Seconds left on an active override."""
        expiry = self.override_expiry(device_id)
        if expiry is None:
            return None
        return (expiry - self._now()).total_seconds()

    # --- Commands -----------------------------------------------------------

    def request_devices(self) -> None:
        self.channel.send("get_devices")

    def toggle(self, device_id: str) -> bool:
        """Ask the controller to flip a device.

        Does nothing for unknown devices or while a toggle of the same device
        is still unconfirmed.

        Returns:
            True if a command was sent
        """
        device = self.get(device_id)
        if device is None:
            logger.debug(f"Toggle ignored, unknown device: {device_id}")
            return False
        if device_id in self.pending:
            logger.debug(f"Toggle ignored, {device_id} already pending")
            return False

        target = device.target
        if target is None:
            logger.warning(f"Device {device_id} has no control address")
            return False

        self.pending.add(device_id)
        self.channel.send("device_control", {
            "method": device.control_method.value,
            "target": target,
            "on": not device.is_on,
        })
        self._start_toggle_timer(device_id)
        logger.info(f"Toggle {device.name} -> {'OFF' if device.is_on else 'ON'} requested")
        return True

    def add_device(
        self,
        device_id: str,
        name: str,
        device_type: DeviceType,
        control_method: ControlMethod,
        ip_address: str,
    ) -> None:
        self.channel.send("add_device", {
            "id": device_id,
            "name": name,
            "deviceType": DeviceType(device_type).value,
            "controlMethod": ControlMethod(control_method).value,
            "ipAddress": ip_address,
        })

    def update_device(self, device_id: str, update: DeviceUpdate) -> None:
        self.channel.send("update_device", {"id": device_id, **update.to_wire()})

    def remove_device(self, device_id: str) -> None:
        self.channel.send("remove_device", {"id": device_id})

    # --- Push handlers ------------------------------------------------------

    def _on_devices(self, payload) -> None:
        records = parse_collection(payload, DeviceRecord)
        self.devices = [r.to_model() for r in records]

        known = {d.id for d in self.devices}
        for device_id in list(self.pending):
            if device_id not in known:
                self._clear_pending(device_id)
        for device_id in list(self.overrides):
            if device_id not in known:
                del self.overrides[device_id]

        logger.debug(f"Device list replaced ({len(self.devices)} devices)")

    def _on_device_status(self, msg: DeviceStatusMessage) -> None:
        device = self.get(msg.device_id) if msg.device_id else None
        if device is None and msg.target:
            device = self.find_by_target(msg.target)
        if device is None:
            logger.debug(f"device_status for unknown device (id={msg.device_id}, target={msg.target})")
            return

        self._clear_pending(device.id)

        if msg.success:
            device.is_on = msg.on
            self.last_error = None
        else:
            self.last_error = f"Controller rejected switching {device.name} {'on' if msg.on else 'off'}"
            logger.warning(self.last_error)

        if msg.override_active and msg.override_remaining_ms and msg.override_remaining_ms > 0:
            expiry = self._now() + timedelta(milliseconds=msg.override_remaining_ms)
            self.overrides[device.id] = expiry
            logger.info(f"Manual override on {device.name} until {expiry.isoformat()}")
        elif msg.override_active is False:
            self.overrides.pop(device.id, None)

    def _on_override_cleared(self, msg: OverrideClearedMessage) -> None:
        if self.overrides.pop(msg.device_id, None) is not None:
            logger.info(f"Manual override cleared on {msg.device_id}")

    # --- Pending toggle bookkeeping ----------------------------------------

    def _start_toggle_timer(self, device_id: str) -> None:
        if self.toggle_timeout is None:
            return
        loop = asyncio.get_running_loop()
        self._toggle_timers[device_id] = loop.call_later(
            self.toggle_timeout, self._expire_pending, device_id
        )

    def _expire_pending(self, device_id: str) -> None:
        self._toggle_timers.pop(device_id, None)
        if device_id in self.pending:
            self.pending.discard(device_id)
            logger.warning(f"No confirmation for {device_id} after {self.toggle_timeout}s, unblocking toggle")

    def _clear_pending(self, device_id: str) -> None:
        self.pending.discard(device_id)
        timer = self._toggle_timers.pop(device_id, None)
        if timer:
            timer.cancel()
