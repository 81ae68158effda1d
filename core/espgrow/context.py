"""
Controller Context

Builds the channel and every store once and wires them together. One
context per controller; nothing here is module level state.
"""

import logging
from datetime import tzinfo
from typing import Optional

from .channel import ChannelManager, Transport
from .controller_settings import SettingsStore
from .devices import DeviceStore
from .models import ConnectionStatus
from .rules import RuleStore
from .sensors import SensorStore
from .settings import ClientSettings
from .system import SystemStore
from .transport import AiohttpTransport

logger = logging.getLogger(__name__)


class ControllerContext:
    """Channel plus the entity stores that mirror one controller."""

    def __init__(
        self,
        settings: ClientSettings,
        transport: Optional[Transport] = None,
        tz: Optional[tzinfo] = None,
    ):
        """Initialize context.

        Args:
            settings: Client settings
            transport: Connection factory (aiohttp websocket when omitted)
            tz: Local zone for schedule rule times (None = host zone)
        """
        self.settings = settings
        self.transport = transport or AiohttpTransport(
            connect_timeout=settings.connect_timeout_seconds
        )

        self.channel = ChannelManager(
            self.transport,
            url=settings.controller_url,
            reconnect_delay=settings.reconnect_delay_seconds,
            max_queued=settings.max_queued_commands,
            queued_ttl=settings.queued_command_ttl_seconds,
        )
        self.devices = DeviceStore(self.channel, toggle_timeout=settings.toggle_timeout_seconds)
        self.sensors = SensorStore(self.channel, history_timeout=settings.history_timeout_seconds)
        self.rules = RuleStore(self.channel, tz=tz)
        self.system = SystemStore(self.channel)
        self.controller_settings = SettingsStore(self.channel)

        self.channel.add_status_listener(self._on_status)

    @property
    def connected(self) -> bool:
        return self.channel.connected

    def start(self) -> None:
        """Connect to the controller. Must run inside the event loop."""
        self.channel.connect()

    async def stop(self) -> None:
        """Tear down the connection and release the transport."""
        await self.channel.aclose()
        close = getattr(self.transport, "close", None)
        if close:
            await close()

    def request_snapshot(self) -> None:
        """Ask the controller for every collection it owns."""
        self.sensors.request_sensors()
        self.devices.request_devices()
        self.rules.request_rules()
        self.controller_settings.request_settings()
        self.system.request_system_info()

    def _on_status(self, status: ConnectionStatus) -> None:
        logger.info(f"Controller connection: {status.value}")
        if status is not ConnectionStatus.CONNECTED:
            return

        self.request_snapshot()
        if self.settings.sync_timezone_on_connect:
            offset = self.controller_settings.sync_timezone()
            logger.info(f"Synced controller timezone to {offset:+d} min")
