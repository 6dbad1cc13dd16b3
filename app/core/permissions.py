from enum import Enum
from typing import FrozenSet


class Role(str, Enum):
    OFFICER = "officer"
    MANAGER = "manager"
    MANAGER_VIEWER = "manager_viewer"
    ADMIN = "admin"
    ADMIN_EDITOR = "admin_editor"

    @classmethod
    def parse(cls, value: "Role | str | None") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown role: {value}") from exc


ADMIN_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.ADMIN_EDITOR})
MANAGER_ROLES: FrozenSet[Role] = frozenset({Role.MANAGER, *ADMIN_ROLES})
# Roles whose listings are never filtered by branch.
UNRESTRICTED_READ_ROLES: FrozenSet[Role] = frozenset({Role.MANAGER_VIEWER, *ADMIN_ROLES})
READ_ONLY_ROLES: FrozenSet[Role] = frozenset({Role.MANAGER_VIEWER})
