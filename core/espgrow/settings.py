"""
EspGrow Configuration Settings

Client-side configuration. Loaded from the add-on options.json in
production, config.yaml in development, or environment variables / .env.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, fields
from typing import Optional
from urllib.parse import urlsplit

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

OPTIONS_PATH = "/data/options.json"
CONFIG_PATH = os.path.join(os.path.dirname(__file__), "..", "..", "config.yaml")

# Environment variable -> setting name
ENV_VARS = {
    "ESPGROW_URL": "controller_url",
    "ESPGROW_HTTP_URL": "http_base_url",
    "ESPGROW_RECONNECT_DELAY": "reconnect_delay_seconds",
    "ESPGROW_CONNECT_TIMEOUT": "connect_timeout_seconds",
    "ESPGROW_TOGGLE_TIMEOUT": "toggle_timeout_seconds",
    "ESPGROW_MAX_QUEUED": "max_queued_commands",
    "ESPGROW_QUEUE_TTL": "queued_command_ttl_seconds",
    "ESPGROW_HISTORY_TIMEOUT": "history_timeout_seconds",
    "ESPGROW_SYNC_TIMEZONE": "sync_timezone_on_connect",
}


def _camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    s1 = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub("([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


@dataclass
class ClientSettings:
    """Connection settings for one controller."""

    controller_url: str  # e.g. "ws://192.168.1.10/ws"
    http_base_url: str = ""  # Derived from controller_url when empty
    reconnect_delay_seconds: float = 3.0
    connect_timeout_seconds: float = 10.0
    toggle_timeout_seconds: float = 5.0
    max_queued_commands: int = 256
    queued_command_ttl_seconds: float = 60.0
    history_timeout_seconds: float = 5.0
    sync_timezone_on_connect: bool = False

    def __post_init__(self):
        if not self.controller_url:
            raise ConfigurationError("controller_url is required")
        parts = urlsplit(self.controller_url)
        if parts.scheme not in ("ws", "wss") or not parts.netloc:
            raise ConfigurationError(f"controller_url must be a ws:// or wss:// URL: {self.controller_url}")

        if not self.http_base_url:
            scheme = "https" if parts.scheme == "wss" else "http"
            self.http_base_url = f"{scheme}://{parts.netloc}"

        # Values from env/options arrive as strings
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type is float and not isinstance(value, float):
                setattr(self, f.name, float(value))
            elif f.type is int and not isinstance(value, int):
                setattr(self, f.name, int(value))
            elif f.type is bool and isinstance(value, str):
                setattr(self, f.name, value.strip().lower() in ("1", "true", "yes", "on"))

    @classmethod
    def from_dict(cls, data: dict) -> "ClientSettings":
        """Create from dictionary."""
        converted = {_camel_to_snake(k): v for k, v in data.items()}

        # Accept the short form used by the web UI settings
        if "esp32_ip_address" in converted:
            host = converted.pop("esp32_ip_address")
            converted.setdefault("controller_url", f"ws://{host}/ws")

        known = {f.name for f in fields(cls)}
        unknown = set(converted) - known
        if unknown:
            logger.debug(f"Ignoring unknown settings: {sorted(unknown)}")

        try:
            return cls(**{k: v for k, v in converted.items() if k in known})
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid controller settings: {e}") from e


def load_settings(
    options_path: str = OPTIONS_PATH,
    config_path: str = CONFIG_PATH,
    env: Optional[dict] = None,
) -> ClientSettings:
    """Load client settings.

    Order: options.json (production), config.yaml (development), then
    environment variables (a .env file is loaded first).

    Raises:
        ConfigurationError: If no controller URL is configured anywhere
    """
    # 1. Home Assistant style add-on options
    if os.path.exists(options_path):
        try:
            with open(options_path) as f:
                options = json.load(f)
            controller = options.get("controller", options)
            if controller.get("controllerUrl") or controller.get("controller_url"):
                logger.info(f"Loaded controller settings from {options_path}")
                return ClientSettings.from_dict(controller)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load {options_path}: {e}")

    # 2. Development config
    if os.path.exists(config_path):
        try:
            with open(config_path) as f:
                config = yaml.safe_load(f) or {}
            controller = config.get("options", {}).get("controller", {})
            if controller:
                logger.info(f"Loaded controller settings from {config_path}")
                return ClientSettings.from_dict(controller)
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load {config_path}: {e}")

    # 3. Environment
    if env is None:
        load_dotenv()
        env = dict(os.environ)
    values = {name: env[var] for var, name in ENV_VARS.items() if env.get(var)}
    if not values.get("controller_url"):
        raise ConfigurationError("No controller configured (set ESPGROW_URL or config.yaml options.controller)")

    logger.info("Loaded controller settings from environment")
    return ClientSettings.from_dict(values)
