"""Single-slot connection manager with idle-expiry tracking."""

from __future__ import annotations

from datetime import timedelta
import logging
from pathlib import Path
import threading
import time
from typing import Any, Callable, ContextManager

from .config import resolve_database
from .drivers import AsyncpgDriver, ConnectionHandle, Driver, PreparedStatement, Statement
from .errors import ConfigurationError, ConnectionError
from .models import ConnectionState, Credentials, Endpoint

LOG = logging.getLogger(__name__)

# Servers commonly drop sessions idle for 8 hours.
DEFAULT_EXPIRATION = timedelta(hours=4)
_ONE_MS = timedelta(milliseconds=1)

Clock = Callable[[], int]


def monotonic_ms() -> int:
    """Milliseconds from a monotonic clock; the default manager clock."""

    return time.monotonic_ns() // 1_000_000


class _NullLock:
    def __enter__(self) -> None:
        return None

    def __exit__(self, *exc_info: object) -> None:
        return None


class ConnectionManager:
    """Hands out one lazily opened connection and replaces it once stale.

    Every successful access pushes the deadline to ``clock() + expiration``.
    An access at or after the deadline closes the old handle (best effort)
    and opens a new one. Liveness is never checked against the server.

    The manager is not thread-safe unless built with ``synchronized=True``.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        credentials: Credentials,
        expiration: timedelta | int | float | None = None,
        *,
        driver: Driver | None = None,
        clock: Clock = monotonic_ms,
        synchronized: bool = False,
    ) -> None:
        self._endpoint = endpoint
        self._credentials = credentials
        self._expiration = _coerce_expiration(expiration)
        self._owned_driver: AsyncpgDriver | None = None
        if driver is None:
            driver = self._owned_driver = AsyncpgDriver()
        self._driver = driver
        self._clock = clock
        self._lock: ContextManager[Any] = threading.RLock() if synchronized else _NullLock()
        self._conn: ConnectionHandle | None = None
        self._expires_at = 0
        self._update_expiration()

    @classmethod
    def from_config(
        cls,
        key: str,
        *,
        config_dir: Path | str | None = None,
        expiration: timedelta | int | float | None = None,
        **kwargs: Any,
    ) -> ConnectionManager:
        """Build a manager for the logical database ``key``."""

        entry = resolve_database(key, config_dir=config_dir)
        if expiration is None and entry.expiration_ms is not None:
            expiration = entry.expiration_ms
        return cls(entry.endpoint(), entry.credentials(), expiration, **kwargs)

    @property
    def driver(self) -> Driver:
        return self._driver

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def expiration(self) -> timedelta:
        return self._expiration

    @property
    def expires_at(self) -> int:
        """Deadline, in clock milliseconds, after which the connection is stale."""

        return self._expires_at

    @property
    def state(self) -> ConnectionState:
        if self._conn is None:
            return ConnectionState.UNCONNECTED
        if self.is_expired():
            return ConnectionState.CONNECTED_EXPIRED
        return ConnectionState.CONNECTED_FRESH

    def is_expired(self) -> bool:
        return self._clock() >= self._expires_at

    def get_connection(self) -> ConnectionHandle:
        """Return a connection, opening or replacing it as needed."""

        with self._lock:
            if self._conn is None:
                return self._establish()
            if self.is_expired():
                LOG.debug(
                    "Connection expired; reconnecting",
                    extra={"endpoint": self._endpoint.descriptor},
                )
                return self.reset_connection()
            self._update_expiration()
            return self._conn

    def reset_connection(self) -> ConnectionHandle:
        """Close the current connection (if any) and open a fresh one.

        Use when the transport reports a broken socket before the deadline.
        """

        with self._lock:
            self._discard()
            return self.get_connection()

    def connect_if_absent(self) -> bool:
        """Open a connection only when none exists.

        Returns True when a new connection was made. An existing connection
        is left alone even if it has expired.
        """

        with self._lock:
            if self._conn is not None:
                return False
            self.get_connection()
            return True

    def get_statement(self) -> Statement:
        """Return a statement on the current connection.

        Any failure while creating it is raised as ``ConnectionError``.
        """

        conn = self.get_connection()
        try:
            return conn.create_statement()
        except ConnectionError:
            raise
        except Exception as exc:
            raise ConnectionError(f"Failed to create statement on {self._endpoint}: {exc}") from exc

    def get_prepared_statement(self, sql: str) -> PreparedStatement:
        """Prepare ``sql`` on the current connection.

        Any failure while preparing, including a server-side SQL error, is
        raised as ``ConnectionError``.
        """

        conn = self.get_connection()
        try:
            return conn.prepare_statement(sql)
        except ConnectionError:
            raise
        except Exception as exc:
            raise ConnectionError(f"Failed to prepare statement on {self._endpoint}: {exc}") from exc

    def close(self) -> None:
        """Close the current connection, if any. Safe to call repeatedly."""

        with self._lock:
            self._discard()

    def __enter__(self) -> ConnectionManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
        if self._owned_driver is not None:
            self._owned_driver.shutdown()

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(endpoint={self._endpoint.descriptor!r}, "
            f"expiration={self._expiration!r}, state={self.state.value!r})"
        )

    def _establish(self) -> ConnectionHandle:
        self._conn = None
        try:
            conn = self._driver.connect(self._endpoint, self._credentials)
        except ConnectionError:
            raise
        except Exception as exc:
            raise ConnectionError(f"Failed to connect to {self._endpoint}: {exc}") from exc
        self._conn = conn
        self._update_expiration()
        LOG.debug("Connection established", extra={"endpoint": self._endpoint.descriptor})
        return conn

    def _discard(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            self._driver.close(conn)
        except Exception as exc:
            LOG.debug(
                "Ignoring failure while closing connection",
                extra={"endpoint": self._endpoint.descriptor, "error": str(exc)},
            )

    def _update_expiration(self) -> None:
        self._expires_at = self._clock() + self._expiration // _ONE_MS


def _coerce_expiration(value: timedelta | int | float | None) -> timedelta:
    """Accept a timedelta or a number of milliseconds."""

    if value is None:
        return DEFAULT_EXPIRATION
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid expiration window: {value!r}")
    if isinstance(value, timedelta):
        window = value
    elif isinstance(value, (int, float)):
        try:
            window = timedelta(milliseconds=value)
        except (OverflowError, ValueError) as exc:
            raise ConfigurationError(f"Invalid expiration window: {value!r}") from exc
    else:
        raise ConfigurationError(f"Invalid expiration window: {value!r}")
    if window < timedelta(0):
        raise ConfigurationError(f"Expiration window must not be negative, got {window}")
    return window


__all__ = ["Clock", "ConnectionManager", "DEFAULT_EXPIRATION", "monotonic_ms"]
