from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import String, and_, cast, false, or_, true
from sqlalchemy.sql.elements import ColumnElement

from app.core.permissions import Role, UNRESTRICTED_READ_ROLES
from app.models.loan_application import OPEN_STATUSES, LoanApplication
from app.services.branches import BranchSet, parse_branches


@dataclass(frozen=True, slots=True)
class Viewer:
    user_id: int
    role: Role
    branches: BranchSet

    @classmethod
    def from_user(cls, user) -> "Viewer":
        return cls(user_id=user.id, role=Role.parse(user.role), branches=parse_branches(user.branches))


@dataclass(frozen=True, slots=True)
class VisibilityScope:
    predicate: ColumnElement[bool]
    # Set when a branch-scoped role has no branches yet; the listing is empty
    # because access was never granted, not because there is no data.
    no_branches: bool = False


def visibility_scope(viewer: Viewer) -> VisibilityScope:
    if viewer.role in UNRESTRICTED_READ_ROLES:
        return VisibilityScope(predicate=true())

    if not viewer.branches:
        return VisibilityScope(predicate=false(), no_branches=True)

    if viewer.role == Role.MANAGER:
        if viewer.branches.wildcard:
            return VisibilityScope(predicate=true())
        return VisibilityScope(predicate=LoanApplication.branch.in_(viewer.branches.names))

    # Officers: the claimable pool in their branches plus their own open work.
    own_work = and_(
        LoanApplication.assigned_to_id == viewer.user_id,
        LoanApplication.status.in_(OPEN_STATUSES),
    )
    if viewer.branches.wildcard:
        pool = and_(LoanApplication.status == "pending", LoanApplication.assigned_to_id.is_(None))
    elif viewer.branches.names:
        pool = and_(
            LoanApplication.status == "pending",
            LoanApplication.assigned_to_id.is_(None),
            LoanApplication.branch.in_(viewer.branches.names),
        )
    else:
        pool = false()
    return VisibilityScope(predicate=or_(pool, own_work))


def branch_filter(branches: BranchSet) -> ColumnElement[bool]:
    """Manager-style restriction: wildcard sees everything, otherwise exact branch names."""
    if branches.wildcard:
        return true()
    if not branches.names:
        return false()
    return LoanApplication.branch.in_(branches.names)


def search_predicate(text: str | None) -> ColumnElement[bool] | None:
    term = (text or "").strip()
    if not term:
        return None
    pattern = f"%{term}%"
    return or_(
        LoanApplication.first_name.ilike(pattern),
        LoanApplication.last_name.ilike(pattern),
        LoanApplication.mobile.contains(term),
        cast(LoanApplication.details, String).ilike(pattern),
    )
