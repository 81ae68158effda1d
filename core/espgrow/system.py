"""
System Store

Controller telemetry: system info, ping round trip and firmware update
progress.
"""

import logging
import time
from typing import Callable, Optional

from .channel import ChannelManager
from .messages import OtaStatusMessage, PongMessage, SystemInfoMessage
from .models import OtaStatus, SystemInfo

logger = logging.getLogger(__name__)


class SystemStore:
    """Controller system information."""

    def __init__(self, channel: ChannelManager, clock: Callable[[], float] = time.monotonic):
        self.channel = channel
        self._clock = clock

        self.info: Optional[SystemInfo] = None
        self.ota: Optional[OtaStatus] = None
        self.latency_ms: Optional[float] = None
        self.last_pong_timestamp: Optional[int] = None  # Controller clock, ms

        self._ping_sent_at: Optional[float] = None

        channel.subscribe("system_info", self._on_system_info, schema=SystemInfoMessage)
        channel.subscribe("pong", self._on_pong, schema=PongMessage)
        channel.subscribe("ota_status", self._on_ota_status, schema=OtaStatusMessage)

    def request_system_info(self) -> None:
        self.channel.send("get_system_info")

    def ping(self) -> None:
        self._ping_sent_at = self._clock()
        self.channel.send("ping")

    def _on_system_info(self, msg: SystemInfoMessage) -> None:
        self.info = msg.to_model()

    def _on_pong(self, msg: PongMessage) -> None:
        self.last_pong_timestamp = msg.timestamp
        if self._ping_sent_at is not None:
            self.latency_ms = (self._clock() - self._ping_sent_at) * 1000.0
            self._ping_sent_at = None
            logger.debug(f"Controller round trip {self.latency_ms:.0f} ms")

    def _on_ota_status(self, msg: OtaStatusMessage) -> None:
        self.ota = msg.to_model()
        if self.ota.status == "error":
            logger.warning(f"Firmware update failed: {self.ota.error}")
        else:
            logger.info(f"Firmware update: {self.ota.status}")
