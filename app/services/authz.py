"""One authorization predicate per state-changing operation.

Predicates are pure: they take the acting user and, where relevant, the loan,
and answer yes/no. ``ensure`` turns a failed predicate into ``Forbidden``.
"""

from __future__ import annotations

from typing import Any

from app.core.errors import Forbidden
from app.core.permissions import ADMIN_ROLES, MANAGER_ROLES, READ_ONLY_ROLES, Role
from app.services.branches import branch_matches, parse_branches


def _role(actor: Any) -> Role:
    return Role.parse(getattr(actor, "role", None))


def _is_read_only(actor: Any) -> bool:
    return _role(actor) in READ_ONLY_ROLES


def can_claim(actor: Any, loan: Any) -> bool:
    """Self-assignment needs a branch match; an empty branch set never matches."""
    if _is_read_only(actor):
        return False
    return branch_matches(parse_branches(getattr(actor, "branches", None)), loan.branch)


def can_request(actor: Any) -> bool:
    return _role(actor) == Role.OFFICER


def can_assign(actor: Any) -> bool:
    return _role(actor) in MANAGER_ROLES


def can_reassign(actor: Any) -> bool:
    return _role(actor) in ADMIN_ROLES


def can_close(actor: Any, loan: Any) -> bool:
    role = _role(actor)
    if role in MANAGER_ROLES:
        return True
    if role == Role.OFFICER:
        return loan.assigned_to_id is not None and loan.assigned_to_id == actor.id
    return False


def can_arbitrate(actor: Any) -> bool:
    return _role(actor) in MANAGER_ROLES


def can_manage_settings(actor: Any) -> bool:
    return _role(actor) in ADMIN_ROLES


def can_manage_users(actor: Any) -> bool:
    return _role(actor) == Role.ADMIN


def can_trigger_sync(actor: Any) -> bool:
    return _role(actor) in MANAGER_ROLES


def can_refresh_verification(actor: Any) -> bool:
    return not _is_read_only(actor)


def ensure(allowed: bool, operation: str, *, reason: str | None = None) -> None:
    if allowed:
        return
    details = {"operation": operation}
    if reason:
        details["reason"] = reason
    raise Forbidden(f"Not permitted to {operation}", details=details)
