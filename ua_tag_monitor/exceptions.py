from typing import Optional

from asyncua import ua


class MonitorError(Exception):
    """Base class for tag monitor failures."""


class ConfigurationError(MonitorError, ValueError):
    """A required environment variable is missing or malformed."""


class SessionError(MonitorError, ConnectionError):
    """The OPC UA session could not be established."""


class SubscriptionError(MonitorError):
    """The server rejected the subscription or one of its monitored items."""

    def __init__(self, message: str, status: Optional[ua.StatusCode] = None) -> None:
        super().__init__(message)
        self.status = status
