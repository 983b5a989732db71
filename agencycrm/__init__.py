"""Layered user CRUD service: HTTP handlers, service, repository, database."""

from __future__ import annotations

from typing import Any

from .config import Config, load_config
from .repository import SQLUserRepository, UserRepository, connect_repository
from .service import UserService


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the API + web application."""

    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Config",
    "SQLUserRepository",
    "UserRepository",
    "UserService",
    "connect_repository",
    "create_app",
    "load_config",
]
