"""Configuration management for the AgencyCRM user service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

PACKAGE_DIR = Path(__file__).resolve().parent

DEFAULT_SERVER_ADDRESS = ":8080"
DEFAULT_TIMEOUT_SECONDS = 10
REQUEST_TIMEOUT_SECONDS = 30
SHUTDOWN_GRACE_SECONDS = 10


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


@dataclass(frozen=True)
class DBConfig:
    """Connection settings for the PostgreSQL database."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = "postgres"
    name: str = "myapp"
    sslmode: str = "disable"
    connect_timeout: int = 5
    statement_timeout: int = REQUEST_TIMEOUT_SECONDS

    def dsn(self) -> str:
        """Return the libpq key/value connection string."""
        return (
            f"host={self.host} port={self.port} user={self.user} "
            f"password={self.password} dbname={self.name} sslmode={self.sslmode}"
        )


@dataclass(frozen=True)
class ServerConfig:
    """HTTP listener settings."""

    address: str = DEFAULT_SERVER_ADDRESS
    read_timeout: int = DEFAULT_TIMEOUT_SECONDS
    # Validated and recorded only; uvicorn has no per-response write deadline.
    write_timeout: int = DEFAULT_TIMEOUT_SECONDS
    request_timeout: int = REQUEST_TIMEOUT_SECONDS
    shutdown_grace: int = SHUTDOWN_GRACE_SECONDS

    @property
    def host(self) -> str:
        return _split_address(self.address)[0]

    @property
    def port(self) -> int:
        return _split_address(self.address)[1]


@dataclass(frozen=True)
class Config:
    """Top level settings passed into the service constructors."""

    server: ServerConfig = field(default_factory=ServerConfig)
    db: DBConfig = field(default_factory=DBConfig)
    static_dir: Path = PACKAGE_DIR / "static"
    templates_dir: Path = PACKAGE_DIR / "templates"


def _split_address(address: str) -> Tuple[str, int]:
    host, sep, port_text = address.rpartition(":")
    if not sep:
        raise ConfigError(f"invalid SERVER_ADDRESS: {address!r} (expected host:port)")
    try:
        port = int(port_text)
    except ValueError as exc:
        raise ConfigError(f"invalid SERVER_ADDRESS: {address!r}") from exc
    return host.strip("[]") or "0.0.0.0", port


def _get_env(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key)
    if value is None:
        return default
    return value


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = _get_env(env, key, str(default))
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"invalid {key}: {raw!r}") from exc


def _get_path(env: Mapping[str, str], key: str, default: Path) -> Path:
    raw = env.get(key)
    if not raw:
        return default
    return Path(raw).expanduser().resolve(strict=False)


def load_config(
    env: Optional[Mapping[str, str]] = None,
    *,
    dotenv_path: Optional[Path] = None,
) -> Config:
    """Build a :class:`Config` from the environment.

    A ``.env`` file is read first when ``env`` is not supplied; variables that
    are already set in the process environment take precedence over it.
    """

    if env is None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        env = os.environ

    server = ServerConfig(
        address=_get_env(env, "SERVER_ADDRESS", DEFAULT_SERVER_ADDRESS),
        read_timeout=_get_int(env, "SERVER_READ_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        write_timeout=_get_int(env, "SERVER_WRITE_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
    )
    # Validate the address eagerly so a bad value fails at startup.
    _split_address(server.address)

    db = DBConfig(
        host=_get_env(env, "DB_HOST", "localhost"),
        port=_get_int(env, "DB_PORT", 5432),
        user=_get_env(env, "DB_USER", "postgres"),
        password=_get_env(env, "DB_PASSWORD", "postgres"),
        name=_get_env(env, "DB_NAME", "myapp"),
        sslmode=_get_env(env, "DB_SSLMODE", "disable"),
    )

    return Config(
        server=server,
        db=db,
        static_dir=_get_path(env, "STATIC_DIR", PACKAGE_DIR / "static"),
        templates_dir=_get_path(env, "TEMPLATES_DIR", PACKAGE_DIR / "templates"),
    )


__all__ = [
    "Config",
    "ConfigError",
    "DBConfig",
    "ServerConfig",
    "load_config",
    "REQUEST_TIMEOUT_SECONDS",
    "SHUTDOWN_GRACE_SECONDS",
]
