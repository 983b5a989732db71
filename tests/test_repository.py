from __future__ import annotations

from datetime import timezone

import pytest
from sqlalchemy import inspect, text

from agencycrm.config import DBConfig
from agencycrm.models import NewUser
from agencycrm.repository import (
    MAX_USERS,
    DuplicateEmailError,
    RepositoryError,
    SQLUserRepository,
    UserNotFoundError,
    build_database_url,
)


def test_create_then_get_returns_stored_user(repository) -> None:
    user_id = repository.create_user(NewUser(name="Ada", email="ada@example.com"))
    assert user_id > 0

    user = repository.get_user(user_id)
    assert user.id == user_id
    assert user.name == "Ada"
    assert user.email == "ada@example.com"
    assert user.created_at.tzinfo == timezone.utc
    assert user.created_at == user.updated_at


def test_ids_start_at_one_and_increase(repository) -> None:
    first = repository.create_user(NewUser(name="First", email="first@example.com"))
    second = repository.create_user(NewUser(name="Second", email="second@example.com"))
    assert first == 1
    assert second == 2


def test_missing_user_raises_not_found(repository) -> None:
    with pytest.raises(UserNotFoundError) as excinfo:
        repository.get_user(42)
    assert excinfo.value.user_id == 42
    assert isinstance(excinfo.value, RepositoryError)


def test_duplicate_email_is_distinguishable(repository) -> None:
    repository.create_user(NewUser(name="Ada", email="ada@example.com"))
    with pytest.raises(DuplicateEmailError):
        repository.create_user(NewUser(name="Imposter", email="ada@example.com"))

    assert [user.name for user in repository.get_users()] == ["Ada"]


def test_get_users_orders_newest_first_and_caps_results(repository) -> None:
    for index in range(MAX_USERS + 5):
        repository.create_user(NewUser(name=f"User {index}", email=f"user{index}@example.com"))

    users = repository.get_users()
    ids = [user.id for user in users]

    assert len(users) == MAX_USERS
    assert ids == sorted(ids, reverse=True)
    assert ids[0] == MAX_USERS + 5
    assert ids[-1] == 6


def test_get_users_on_empty_store(repository) -> None:
    assert repository.get_users() == []


def test_initialize_creates_table_and_email_index(sql_repository: SQLUserRepository) -> None:
    inspector = inspect(sql_repository.engine)
    assert "users" in inspector.get_table_names()
    columns = {column["name"] for column in inspector.get_columns("users")}
    assert columns == {"id", "name", "email", "created_at", "updated_at"}
    index_names = {index["name"] for index in inspector.get_indexes("users")}
    assert "idx_users_email" in index_names

    # Running it again must be harmless.
    sql_repository.initialize()


def test_seed_sample_users_skips_existing(sql_repository: SQLUserRepository) -> None:
    assert sql_repository.seed_sample_users() == 2
    assert sql_repository.seed_sample_users() == 0
    emails = {user.email for user in sql_repository.get_users()}
    assert emails == {"john@example.com", "jane@example.com"}


def test_storage_failure_is_wrapped(sql_repository: SQLUserRepository) -> None:
    with sql_repository.engine.begin() as conn:
        conn.execute(text("DROP TABLE users"))

    with pytest.raises(RepositoryError) as excinfo:
        sql_repository.get_users()
    assert not isinstance(excinfo.value, UserNotFoundError)
    assert "failed to get users" in str(excinfo.value)
    assert excinfo.value.__cause__ is not None


def test_other_integrity_errors_are_not_duplicates(sql_repository: SQLUserRepository) -> None:
    with pytest.raises(RepositoryError) as excinfo:
        sql_repository.create_user(NewUser(name=None, email="nameless@example.com"))  # type: ignore[arg-type]

    assert not isinstance(excinfo.value, DuplicateEmailError)
    assert "failed to create a user" in str(excinfo.value)
    assert sql_repository.get_users() == []


def test_ping_succeeds_on_live_engine(sql_repository: SQLUserRepository) -> None:
    sql_repository.ping()


def test_build_database_url_uses_dsn_components() -> None:
    config = DBConfig(
        host="db.internal",
        port=6543,
        user="crm",
        password="s3cret",
        name="agency",
        sslmode="require",
    )
    url = build_database_url(config)

    assert url.drivername == "postgresql+psycopg2"
    assert url.host == "db.internal"
    assert url.port == 6543
    assert url.username == "crm"
    assert url.password == "s3cret"
    assert url.database == "agency"
    assert url.query["sslmode"] == "require"
    assert url.query["application_name"] == "CRMandLead"
