"""Exception hierarchy shared across winpanel modules."""

from __future__ import annotations


class WinpanelError(RuntimeError):
    """Base class for errors raised inside winpanel."""


class ConnectionNotFoundError(WinpanelError, LookupError):
    """Raised when an operation targets an unknown connection id."""

    def __init__(self, connection_id: str) -> None:
        super().__init__("Connection not found")
        self.connection_id = connection_id


class InvalidConnectionError(WinpanelError, ValueError):
    """Raised when connection data is missing required fields."""


class UnsupportedPlatformError(WinpanelError):
    """Raised when a Windows-only operation runs elsewhere."""


__all__ = [
    "ConnectionNotFoundError",
    "InvalidConnectionError",
    "UnsupportedPlatformError",
    "WinpanelError",
]
