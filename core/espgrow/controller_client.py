"""
Simple Controller HTTP Client for EspGrow

Minimal client for the controller's configuration backup and restore
endpoints. Everything else goes over the websocket channel.
"""

import logging
from typing import Any

import requests

from .exceptions import ControllerConnectionError

logger = logging.getLogger(__name__)

BACKUP_SECTIONS = ("devices", "rules", "sensors")


class ControllerClient:
    """Simple controller REST API client."""

    def __init__(self, base_url: str, timeout: float = 5):
        """Initialize controller client.

        Args:
            base_url: Controller URL (e.g., "http://192.168.1.10")
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        # Create a session for connection pooling
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.timeout = timeout

    def backup(self) -> dict[str, Any]:
        """Download the controller's device, rule and sensor configuration.

        Returns:
            Dictionary with 'devices', 'rules' and 'sensors' lists

        Raises:
            ControllerConnectionError: If the request fails
        """
        url = f"{self.base_url}/api/config/backup"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            bundle = response.json()
        except requests.exceptions.RequestException as e:
            raise ControllerConnectionError(f"Config backup failed: {e}") from e
        except ValueError as e:
            raise ControllerConnectionError(f"Config backup is not valid JSON: {e}") from e

        logger.info(
            "Downloaded config backup: "
            + ", ".join(f"{len(bundle.get(k, []))} {k}" for k in BACKUP_SECTIONS)
        )
        return bundle

    def restore(self, bundle: dict[str, Any]) -> None:
        """Replace the controller's configuration with a backup bundle.

        The controller re-broadcasts devices, rules and sensor config after a
        successful restore, so the stores update through the channel.

        Raises:
            ValueError: If the bundle is missing a section
            ControllerConnectionError: If the request fails
        """
        missing = [k for k in BACKUP_SECTIONS if not isinstance(bundle.get(k), list)]
        if missing:
            raise ValueError(f"Backup is missing or has invalid sections: {missing}")

        url = f"{self.base_url}/api/config/restore"
        data = {k: bundle[k] for k in BACKUP_SECTIONS}

        try:
            logger.debug(f"Calling {url}")
            response = self.session.post(url, json=data, timeout=self.timeout)
            response.raise_for_status()
            logger.info(f"Restored config - Response: {response.status_code}")
        except requests.exceptions.RequestException as e:
            raise ControllerConnectionError(f"Config restore failed: {e}") from e
