"""
EspGrow Custom Exceptions

Simple exception hierarchy for error handling.
"""


class EspGrowError(Exception):
    """Base exception for EspGrow."""

    pass


class ConfigurationError(EspGrowError):
    """Configuration is invalid."""

    pass


class ControllerConnectionError(EspGrowError):
    """Cannot reach the controller over HTTP."""

    pass


class ParseError(EspGrowError):
    """Inbound frame or payload could not be decoded."""

    pass


class TelemetryError(ParseError):
    """Binary telemetry payload is malformed."""

    pass


class CommandTimeoutError(EspGrowError):
    """Controller did not answer a request in time."""

    pass
