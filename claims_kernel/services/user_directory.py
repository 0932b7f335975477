"""In-memory UserDirectory for tests, demos and single-process hosts."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from claims_kernel.domain.claim import Role


@dataclass(frozen=True)
class DirectoryUser:
    user_id: str
    role: Role
    department: str | None = None
    name: str = ""


class InMemoryUserDirectory:
    """Thread-safe user -> (role, department) lookup."""

    def __init__(self, users: list[DirectoryUser] | None = None) -> None:
        self._users: dict[str, DirectoryUser] = {}
        self._lock = threading.Lock()
        for user in users or ():
            self.add(user)

    def add(self, user: DirectoryUser) -> None:
        with self._lock:
            self._users[user.user_id] = user

    def role_of(self, user_id: str) -> Role | None:
        user = self._users.get(user_id)
        return user.role if user else None

    def department_of(self, user_id: str) -> str | None:
        user = self._users.get(user_id)
        return user.department if user else None

    def users_with_role(
        self, role: Role, department: str | None = None
    ) -> tuple[str, ...]:
        with self._lock:
            users = list(self._users.values())
        return tuple(
            sorted(
                u.user_id
                for u in users
                if u.role == role and (department is None or u.department == department)
            )
        )
