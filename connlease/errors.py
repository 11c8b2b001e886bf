"""Exception types raised by connlease."""

from __future__ import annotations

import builtins


class ConnleaseError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(ConnleaseError, ValueError):
    """Raised when credentials cannot be resolved or settings are invalid."""


class ConnectionError(ConnleaseError, builtins.ConnectionError):
    """Raised when the driver fails to establish a connection."""


__all__ = ["ConfigurationError", "ConnectionError", "ConnleaseError"]
