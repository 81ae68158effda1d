"""
Controller Settings Store

Settings kept on the controller itself. Currently only the timezone offset
the controller uses for its local clock.
"""

import logging
from typing import Optional

from .channel import ChannelManager
from .messages import SettingsMessage
from .schedule import local_utc_offset_minutes

logger = logging.getLogger(__name__)


class SettingsStore:
    def __init__(self, channel: ChannelManager):
        self.channel = channel
        self.timezone_offset_minutes: Optional[int] = None

        channel.subscribe("settings", self._on_settings, schema=SettingsMessage)

    def request_settings(self) -> None:
        self.channel.send("get_settings")

    def set_timezone(self, offset_minutes: int) -> None:
        """Set the controller's UTC offset in minutes east of UTC."""
        self.channel.send("set_timezone", {"offsetMinutes": int(offset_minutes)})

    def sync_timezone(self) -> int:
        """Push this host's current UTC offset to the controller."""
        offset = local_utc_offset_minutes()
        self.set_timezone(offset)
        return offset

    def _on_settings(self, msg: SettingsMessage) -> None:
        if msg.timezone_offset_minutes != self.timezone_offset_minutes:
            logger.info(f"Controller timezone offset: {msg.timezone_offset_minutes:+d} min")
        self.timezone_offset_minutes = msg.timezone_offset_minutes
