"""Lazily opened, expiry-tracked database connections."""

from .config import DatabaseEntry, resolve_database
from .drivers import AsyncpgDriver, DemoDriver, Driver, QueryExecutionError, QueryResult
from .errors import ConfigurationError, ConnectionError, ConnleaseError
from .manager import DEFAULT_EXPIRATION, ConnectionManager
from .models import ConnectionState, Credentials, Endpoint

__all__ = [
    "AsyncpgDriver",
    "ConfigurationError",
    "ConnectionError",
    "ConnectionManager",
    "ConnectionState",
    "ConnleaseError",
    "Credentials",
    "DEFAULT_EXPIRATION",
    "DatabaseEntry",
    "DemoDriver",
    "Driver",
    "Endpoint",
    "QueryExecutionError",
    "QueryResult",
    "resolve_database",
]
