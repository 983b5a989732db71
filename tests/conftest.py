from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agencycrm.config import Config
from agencycrm.mock_repository import MockRepository
from agencycrm.repository import SQLUserRepository
from agencycrm.server import create_app
from agencycrm.service import UserService


def create_memory_engine() -> Engine:
    # A single shared connection keeps the in-memory schema alive across
    # the worker threads used by the HTTP handlers.
    return create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def sql_repository() -> Iterator[SQLUserRepository]:
    repository = SQLUserRepository(create_memory_engine())
    repository.initialize()
    yield repository
    repository.close()


@pytest.fixture()
def mock_repository() -> MockRepository:
    return MockRepository()


@pytest.fixture(params=["sql", "mock"])
def repository(request, sql_repository, mock_repository):
    if request.param == "sql":
        return sql_repository
    return mock_repository


@pytest.fixture()
def config() -> Config:
    return Config()


@pytest.fixture()
def client(sql_repository: SQLUserRepository, config: Config) -> Iterator[TestClient]:
    app = create_app(service=UserService(sql_repository), config=config)
    with TestClient(app) as test_client:
        yield test_client
