"""Storage access for user records.

:class:`UserRepository` is the contract the service layer depends on.
:class:`SQLUserRepository` implements it on top of a SQLAlchemy engine
(PostgreSQL in production, SQLite in the test-suite) and
:class:`~agencycrm.mock_repository.MockRepository` implements it in memory.
"""
from __future__ import annotations

import abc
import logging
from datetime import datetime, timezone
from typing import List, Mapping, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    bindparam,
    create_engine,
    text,
)
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from .config import DBConfig
from .models import NewUser, User

logger = logging.getLogger("agencycrm.repository")

MAX_USERS = 100

APPLICATION_NAME = "CRMandLead"
POOL_SIZE = 25
POOL_RECYCLE_SECONDS = 5 * 60

# SQLSTATE raised by PostgreSQL when statement_timeout cancels a query.
_PG_QUERY_CANCELED = "57014"
_PG_UNIQUE_VIOLATION = "23505"


class RepositoryError(RuntimeError):
    """Raised when the storage backend fails."""


class UserNotFoundError(RepositoryError):
    """Raised when no user row matches the requested identifier."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"user {user_id} not found")
        self.user_id = user_id


class DuplicateEmailError(RepositoryError):
    """Raised when an insert violates the unique constraint on ``email``."""

    def __init__(self, email: str) -> None:
        super().__init__(f"a user with email {email!r} already exists")
        self.email = email


class StorageTimeoutError(RepositoryError):
    """Raised when a statement or connection attempt runs out of time."""


class UserRepository(abc.ABC):
    """Operations the service layer needs from persistent storage."""

    @abc.abstractmethod
    def get_user(self, user_id: int) -> User:
        """Return the user with ``user_id`` or raise :class:`UserNotFoundError`."""

    @abc.abstractmethod
    def get_users(self) -> List[User]:
        """Return up to :data:`MAX_USERS` users, newest (highest id) first."""

    @abc.abstractmethod
    def create_user(self, user: NewUser) -> int:
        """Persist ``user`` and return the identifier assigned by storage."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release any resources held by the repository."""

    def __enter__(self) -> "UserRepository":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
    Index("idx_users_email", "email"),
)

_USER_COLUMNS = {
    "id": Integer,
    "name": String,
    "email": String,
    "created_at": DateTime,
    "updated_at": DateTime,
}

_SELECT_USER = text(
    "SELECT id, name, email, created_at, updated_at FROM users WHERE id = :id"
).columns(**_USER_COLUMNS)

_SELECT_USERS = text(
    "SELECT id, name, email, created_at, updated_at FROM users ORDER BY id DESC LIMIT :limit"
).columns(**_USER_COLUMNS)

_INSERT_USER = text(
    """
    INSERT INTO users (name, email, created_at, updated_at)
    VALUES (:name, :email, :created_at, :updated_at)
    RETURNING id
    """
).bindparams(
    bindparam("created_at", type_=DateTime),
    bindparam("updated_at", type_=DateTime),
)

SAMPLE_USERS: Sequence[NewUser] = (
    NewUser(name="John Doe", email="john@example.com"),
    NewUser(name="Jane Smith", email="jane@example.com"),
)


def _current_timestamp() -> datetime:
    # Columns are ``timestamp without time zone``; values are stored as UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_user(row: Mapping[str, object]) -> User:
    return User(
        id=int(row["id"]),
        name=str(row["name"]),
        email=str(row["email"]),
        created_at=_as_utc(row["created_at"]),  # type: ignore[arg-type]
        updated_at=_as_utc(row["updated_at"]),  # type: ignore[arg-type]
    )


def _is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == _PG_UNIQUE_VIOLATION:
        return True
    # SQLite reports "UNIQUE constraint failed: users.email".
    return "UNIQUE constraint failed" in str(exc.orig)


def _translate_error(exc: SQLAlchemyError, action: str) -> RepositoryError:
    if isinstance(exc, PoolTimeoutError):
        return StorageTimeoutError(f"failed to {action}: connection pool exhausted")
    if isinstance(exc, OperationalError):
        if getattr(exc.orig, "pgcode", None) == _PG_QUERY_CANCELED:
            return StorageTimeoutError(f"failed to {action}: statement timed out")
        if "timeout expired" in str(exc.orig):
            return StorageTimeoutError(f"failed to {action}: connection timed out")
    return RepositoryError(f"failed to {action}: {exc}")


class SQLUserRepository(UserRepository):
    """User repository backed by a relational database."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine

    def initialize(self) -> None:
        """Create the ``users`` table and its index if they do not already exist."""

        try:
            metadata.create_all(self._engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise _translate_error(exc, "create schema") from exc
        logger.info("Database schema ready")

    def ping(self) -> None:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise _translate_error(exc, "connect to database") from exc

    def get_user(self, user_id: int) -> User:
        try:
            with self._engine.connect() as conn:
                row = conn.execute(_SELECT_USER, {"id": user_id}).mappings().first()
        except SQLAlchemyError as exc:
            raise _translate_error(exc, "get user") from exc

        if row is None:
            raise UserNotFoundError(user_id)
        return _row_to_user(row)

    def get_users(self) -> List[User]:
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(_SELECT_USERS, {"limit": MAX_USERS}).mappings().all()
        except SQLAlchemyError as exc:
            raise _translate_error(exc, "get users") from exc
        return [_row_to_user(row) for row in rows]

    def create_user(self, user: NewUser) -> int:
        now = _current_timestamp()
        try:
            with self._engine.begin() as conn:
                user_id = conn.execute(
                    _INSERT_USER,
                    {
                        "name": user.name,
                        "email": user.email,
                        "created_at": now,
                        "updated_at": now,
                    },
                ).scalar_one()
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise DuplicateEmailError(user.email) from exc
            raise _translate_error(exc, "create a user") from exc
        except SQLAlchemyError as exc:
            raise _translate_error(exc, "create a user") from exc
        return int(user_id)

    def seed_sample_users(self) -> int:
        """Insert the bundled sample users, skipping emails that already exist."""

        created = 0
        for sample in SAMPLE_USERS:
            try:
                self.create_user(sample)
            except DuplicateEmailError:
                continue
            created += 1
        return created

    def close(self) -> None:
        self._engine.dispose()


def build_database_url(config: DBConfig) -> URL:
    return URL.create(
        "postgresql+psycopg2",
        username=config.user,
        password=config.password,
        host=config.host,
        port=config.port,
        database=config.name,
        query={"sslmode": config.sslmode, "application_name": APPLICATION_NAME},
    )


def create_engine_from_config(config: DBConfig) -> Engine:
    """Create a pooled PostgreSQL engine for ``config``."""

    return create_engine(
        build_database_url(config),
        pool_size=POOL_SIZE,
        max_overflow=0,
        pool_recycle=POOL_RECYCLE_SECONDS,
        pool_pre_ping=True,
        pool_timeout=config.connect_timeout,
        connect_args={
            "connect_timeout": config.connect_timeout,
            "options": f"-c statement_timeout={config.statement_timeout * 1000}",
        },
    )


def connect_repository(config: DBConfig) -> SQLUserRepository:
    """Create the engine, verify the database answers and return a repository."""

    repository = SQLUserRepository(create_engine_from_config(config))
    try:
        repository.ping()
    except RepositoryError:
        repository.close()
        raise
    logger.info("Connected to database %s on %s:%s", config.name, config.host, config.port)
    return repository


__all__ = [
    "DuplicateEmailError",
    "MAX_USERS",
    "RepositoryError",
    "SAMPLE_USERS",
    "SQLUserRepository",
    "StorageTimeoutError",
    "UserNotFoundError",
    "UserRepository",
    "build_database_url",
    "connect_repository",
    "create_engine_from_config",
    "users_table",
]
