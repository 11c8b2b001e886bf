"""Value types shared by the manager, drivers and credential provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DEFAULT_PORT = 5432


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Address of the target server plus database name."""

    host: str
    database: str
    port: int = DEFAULT_PORT

    @property
    def descriptor(self) -> str:
        return f"postgresql://{self.host}:{self.port}/{self.database}"

    def __str__(self) -> str:
        return self.descriptor


@dataclass(frozen=True, slots=True)
class Credentials:
    """Username/password pair used for every handshake."""

    username: str
    password: str = field(default="", repr=False)


class ConnectionState(str, Enum):
    """Lifecycle states reported by ``ConnectionManager.state``."""

    UNCONNECTED = "unconnected"
    CONNECTED_FRESH = "connected_fresh"
    CONNECTED_EXPIRED = "connected_expired"


__all__ = ["ConnectionState", "Credentials", "DEFAULT_PORT", "Endpoint"]
