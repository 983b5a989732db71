"""Business operations on users, independent of HTTP and SQL."""
from __future__ import annotations

import logging
from typing import List

from .models import CreateUserRequest, NewUser, UserResponse
from .repository import (
    DuplicateEmailError,
    RepositoryError,
    UserNotFoundError,
    UserRepository,
)

logger = logging.getLogger("agencycrm.service")


class ServiceError(RuntimeError):
    """Raised when a user operation cannot be completed."""


class UserNotFound(ServiceError):
    """Raised when the requested user does not exist."""


class EmailAlreadyExists(ServiceError):
    """Raised when another user already owns the email address."""


def _wrap(operation: str, exc: RepositoryError) -> ServiceError:
    message = f"{operation}: {exc}"
    if isinstance(exc, UserNotFoundError):
        return UserNotFound(message)
    if isinstance(exc, DuplicateEmailError):
        return EmailAlreadyExists(message)
    return ServiceError(message)


class UserService:
    """Thin layer between the HTTP handlers and a :class:`UserRepository`."""

    def __init__(self, repository: UserRepository) -> None:
        self._repository = repository

    @property
    def repository(self) -> UserRepository:
        return self._repository

    def get_user(self, user_id: int) -> UserResponse:
        try:
            user = self._repository.get_user(user_id)
        except RepositoryError as exc:
            raise _wrap("get user", exc) from exc
        return UserResponse.from_user(user)

    def get_users(self) -> List[UserResponse]:
        try:
            users = self._repository.get_users()
        except RepositoryError as exc:
            raise _wrap("get users", exc) from exc
        return [UserResponse.from_user(user) for user in users]

    def create_user(self, request: CreateUserRequest) -> int:
        draft = NewUser(name=request.name, email=request.email)
        try:
            user_id = self._repository.create_user(draft)
        except RepositoryError as exc:
            raise _wrap("create user", exc) from exc
        logger.info("Created user %s", user_id)
        return user_id

    def close(self) -> None:
        self._repository.close()


__all__ = [
    "EmailAlreadyExists",
    "ServiceError",
    "UserNotFound",
    "UserService",
]
