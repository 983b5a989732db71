"""In-memory :class:`~agencycrm.repository.UserRepository` used by the tests."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .models import NewUser, User
from .repository import (
    MAX_USERS,
    DuplicateEmailError,
    RepositoryError,
    UserNotFoundError,
    UserRepository,
)


class MockRepository(UserRepository):
    """Dictionary-backed repository mirroring the SQL ordering and limit.

    ``fail_with`` makes every subsequent call raise the given error, which lets
    tests exercise the storage failure paths. Each call is appended to
    ``calls`` as ``(method, argument)``. Not safe for concurrent mutation.
    """

    def __init__(self) -> None:
        self._users: Dict[int, User] = {}
        self._next_id = 1
        self.fail_with: Optional[RepositoryError] = None
        self.calls: List[Tuple[str, object]] = []
        self.closed = False

    def _record(self, method: str, argument: object = None) -> None:
        self.calls.append((method, argument))
        if self.fail_with is not None:
            raise self.fail_with

    def get_user(self, user_id: int) -> User:
        self._record("get_user", user_id)
        try:
            return self._users[user_id]
        except KeyError:
            raise UserNotFoundError(user_id) from None

    def get_users(self) -> List[User]:
        self._record("get_users")
        users = sorted(self._users.values(), key=lambda user: user.id, reverse=True)
        return users[:MAX_USERS]

    def create_user(self, user: NewUser) -> int:
        self._record("create_user", user)
        if any(existing.email == user.email for existing in self._users.values()):
            raise DuplicateEmailError(user.email)

        user_id = self._next_id
        now = datetime.now(timezone.utc)
        self._users[user_id] = User(
            id=user_id,
            name=user.name,
            email=user.email,
            created_at=now,
            updated_at=now,
        )
        self._next_id += 1
        return user_id

    def close(self) -> None:
        self.closed = True


__all__ = ["MockRepository"]
