"""EspGrow controller client package."""

# Define public API
__all__ = [
    "ClientSettings",
    "ControllerContext",
    "ChannelManager",
    "ControllerClient",
    "load_settings",
]

# Import settings
from .settings import ClientSettings, load_settings

# Import channel and context
from .channel import ChannelManager
from .context import ControllerContext

# Import HTTP client
from .controller_client import ControllerClient
