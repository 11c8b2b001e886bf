"""Credential provider backed by TOML files in a config directory."""

from __future__ import annotations

import os
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .models import DEFAULT_PORT, Credentials, Endpoint

CONFIG_DIR = Path.home() / ".config" / "connlease"
CONFIG_DIR_ENV = "CONNLEASE_CONFIG_DIR"
ENVIRONMENT_FILE = "environment.toml"
DATABASE_FILE = "database.toml"


class DatabaseEntry(BaseModel):
    """One database entry stored in database.toml."""

    name: str
    host: str
    database: str
    username: str
    password: str = Field(default="", repr=False)
    port: int = Field(default=DEFAULT_PORT, gt=0)
    expiration_ms: int | None = Field(default=None, ge=0)

    def endpoint(self) -> Endpoint:
        return Endpoint(host=self.host, database=self.database, port=self.port)

    def credentials(self) -> Credentials:
        return Credentials(username=self.username, password=self.password)


def default_config_dir() -> Path:
    """Directory holding environment.toml and database.toml."""

    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return CONFIG_DIR


def resolve_database(key: str, *, config_dir: Path | str | None = None) -> DatabaseEntry:
    """Resolve a logical database key to its connection settings.

    environment.toml maps ``key`` to an entry name and database.toml holds the
    entry itself. Every failure is reported as ``ConfigurationError``.
    """

    directory = Path(config_dir) if config_dir is not None else default_config_dir()
    environment = _read_toml(directory / ENVIRONMENT_FILE)
    entry_name = environment.get(key)
    if not isinstance(entry_name, str) or not entry_name:
        raise ConfigurationError(f"Database key '{key}' not found in {directory / ENVIRONMENT_FILE}")

    databases = _read_toml(directory / DATABASE_FILE)
    raw = databases.get(entry_name)
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Database entry '{entry_name}' for key '{key}' not found in {directory / DATABASE_FILE}"
        )
    try:
        return DatabaseEntry(name=entry_name, **raw)
    except (TypeError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid database entry '{entry_name}' for key '{key}': {exc}") from exc


def _read_toml(path: Path) -> dict[str, object]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file {path} does not exist") from exc
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigurationError(f"Failed to read config file {path}: {exc}") from exc


__all__ = [
    "CONFIG_DIR",
    "CONFIG_DIR_ENV",
    "DATABASE_FILE",
    "DatabaseEntry",
    "ENVIRONMENT_FILE",
    "default_config_dir",
    "resolve_database",
]
