"""Domain records and the JSON shapes exchanged over the HTTP API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict


@dataclass(frozen=True)
class User:
    """Represents a user row stored in the ``users`` table."""

    id: int
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class NewUser:
    """Fields supplied by callers when creating a user.

    The identifier and timestamps are assigned by the repository.
    """

    name: str
    email: str


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = ""
    email: str = ""

    def missing_fields(self) -> bool:
        return not self.name or not self.email


class CreateUserResponse(BaseModel):
    id: int


class UserResponse(BaseModel):
    """Public projection of :class:`User`; ``updated_at`` stays internal."""

    id: int
    name: str
    email: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            created_at=user.created_at,
        )


class HealthResponse(BaseModel):
    status: str
    time: str


class ErrorResponse(BaseModel):
    error: str


__all__ = [
    "CreateUserRequest",
    "CreateUserResponse",
    "ErrorResponse",
    "HealthResponse",
    "NewUser",
    "User",
    "UserResponse",
]
