from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import Conflict, NotFound, ValidationError
from app.models.assignment_request import AssignmentRequest
from app.models.loan_application import OPEN_STATUSES, TERMINAL_STATUSES, LoanApplication
from app.models.user import User
from app.schemas.loan import (
    LoanListFilters,
    LoanListResponse,
    Pagination,
    SecureSearchMatch,
    SecureSearchResponse,
)
from app.services import authz
from app.services.assignment_requests import reject_pending_requests
from app.services.audit import record_audit_event
from app.services.form_source import map_submission
from app.services.loan_details import LoanDetails
from app.services.loan_views import serialize_loan
from app.services.loan_visibility import Viewer, search_predicate, visibility_scope
from app.services.sync_reconciler import upsert_application
from app.services.verification_source import VerificationSourceClient


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(slots=True)
class VerificationRefresh:
    verified: bool
    changed: bool


def _loan_options():
    return (
        selectinload(LoanApplication.assigned_to),
        selectinload(
            LoanApplication.assignment_requests.and_(AssignmentRequest.status == "pending")
        ).selectinload(AssignmentRequest.requested_by),
    )


async def get_loan(db: AsyncSession, loan_id: int, *, with_relations: bool = True) -> LoanApplication:
    stmt = (
        select(LoanApplication)
        .where(LoanApplication.id == loan_id)
        .execution_options(populate_existing=True)
    )
    if with_relations:
        stmt = stmt.options(*_loan_options())
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise NotFound("Loan application not found", details={"loan_id": loan_id})
    return loan


def _ensure_open(loan: LoanApplication) -> None:
    if loan.status in TERMINAL_STATUSES:
        raise Conflict(
            "Loan application is already closed",
            details={"loan_id": loan.id, "status": loan.status, "reason": "terminal"},
        )


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found", details={"user_id": user_id})
    return user


async def claim(db: AsyncSession, loan_id: int, actor: User) -> LoanApplication:
    loan = await get_loan(db, loan_id, with_relations=False)
    _ensure_open(loan)
    if loan.assigned_to_id is not None:
        raise Conflict(
            "Loan application is already assigned",
            details={"loan_id": loan_id, "reason": "already_assigned"},
        )
    authz.ensure(
        authz.can_claim(actor, loan),
        "claim",
        reason="no_branches" if not (actor.branches or "").strip() else "branch_mismatch",
    )

    # Check-and-set in one statement; a concurrent claim leaves rowcount at 0.
    result = await db.execute(
        update(LoanApplication)
        .where(
            LoanApplication.id == loan_id,
            LoanApplication.assigned_to_id.is_(None),
            LoanApplication.status == "pending",
        )
        .values(assigned_to_id=actor.id, status="in_progress")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Loan application was claimed by someone else",
            details={"loan_id": loan_id, "reason": "already_assigned"},
        )
    await reject_pending_requests(db, loan_id, handled_by_id=actor.id)
    await db.commit()
    record_audit_event(
        actor_id=actor.id,
        action="loan.claimed",
        resource_type="loan_application",
        resource_id=loan_id,
        new_value={"assigned_to_id": actor.id, "status": "in_progress"},
    )
    return await get_loan(db, loan_id)


async def assign(db: AsyncSession, loan_id: int, officer_id: int, actor: User) -> LoanApplication:
    authz.ensure(authz.can_assign(actor), "assign")
    loan = await get_loan(db, loan_id, with_relations=False)
    _ensure_open(loan)
    await _get_user(db, officer_id)

    result = await db.execute(
        update(LoanApplication)
        .where(
            LoanApplication.id == loan_id,
            LoanApplication.assigned_to_id.is_(None),
            LoanApplication.status == "pending",
        )
        .values(assigned_to_id=officer_id, status="in_progress")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Only pending, unassigned applications can be assigned",
            details={"loan_id": loan_id, "reason": "not_assignable"},
        )
    await reject_pending_requests(db, loan_id, handled_by_id=actor.id)
    await db.commit()
    record_audit_event(
        actor_id=actor.id,
        action="loan.assigned",
        resource_type="loan_application",
        resource_id=loan_id,
        new_value={"assigned_to_id": officer_id, "status": "in_progress"},
    )
    return await get_loan(db, loan_id)


async def reassign(
    db: AsyncSession,
    loan_id: int,
    actor: User,
    *,
    branch: str | None = None,
    officer_id: int | None | _Unset = UNSET,
) -> LoanApplication:
    """Change branch and/or assignee.

    ``officer_id`` left as ``UNSET`` keeps the assignee; ``None`` unassigns and
    returns the loan to ``pending``; an id assigns and moves it to ``in_progress``.
    """
    authz.ensure(authz.can_reassign(actor), "reassign")
    values: dict[str, Any] = {}
    new_branch = (branch or "").strip()
    if new_branch:
        values["branch"] = new_branch
    if officer_id is not UNSET:
        if officer_id is None:
            values.update(assigned_to_id=None, status="pending")
        else:
            values.update(assigned_to_id=officer_id, status="in_progress")
    if not values:
        raise ValidationError("No changes requested", details={"fields": ["branch", "officer_id"]})

    loan = await get_loan(db, loan_id, with_relations=False)
    _ensure_open(loan)
    before = {"branch": loan.branch, "assigned_to_id": loan.assigned_to_id, "status": loan.status}
    if officer_id not in (UNSET, None):
        await _get_user(db, officer_id)

    result = await db.execute(
        update(LoanApplication)
        .where(LoanApplication.id == loan_id, LoanApplication.status.in_(OPEN_STATUSES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Loan application is already closed",
            details={"loan_id": loan_id, "reason": "terminal"},
        )
    if values.get("assigned_to_id") is not None:
        await reject_pending_requests(db, loan_id, handled_by_id=actor.id)
    await db.commit()
    record_audit_event(
        actor_id=actor.id,
        action="loan.reassigned",
        resource_type="loan_application",
        resource_id=loan_id,
        old_value=before,
        new_value={**before, **values},
    )
    return await get_loan(db, loan_id)


async def close(
    db: AsyncSession,
    loan_id: int,
    status: str,
    actor: User,
    *,
    reason: str | None = None,
    now: datetime | None = None,
) -> LoanApplication:
    if status not in TERMINAL_STATUSES:
        raise ValidationError(
            "Unsupported target status",
            details={"status": status, "allowed": list(TERMINAL_STATUSES)},
        )
    loan = await get_loan(db, loan_id, with_relations=False)
    _ensure_open(loan)
    authz.ensure(authz.can_close(actor, loan), "close", reason="not_assignee")

    closed_at = now or datetime.now(timezone.utc)
    values: dict[str, Any] = {"status": status, "closed_at": closed_at, "closed_by_id": actor.id}
    if status == "cancelled" and reason and reason.strip():
        values["cancellation_reason"] = reason.strip()

    conditions = [LoanApplication.id == loan_id, LoanApplication.status.in_(OPEN_STATUSES)]
    if not authz.can_assign(actor):
        # Officers may only close while they still hold the loan.
        conditions.append(LoanApplication.assigned_to_id == actor.id)
    result = await db.execute(
        update(LoanApplication)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Loan application changed state before it could be closed",
            details={"loan_id": loan_id, "reason": "state_changed"},
        )
    await reject_pending_requests(db, loan_id, handled_by_id=actor.id, handled_at=closed_at)
    await db.commit()
    record_audit_event(
        actor_id=actor.id,
        action="loan.closed",
        resource_type="loan_application",
        resource_id=loan_id,
        old_value={"status": loan.status},
        new_value={"status": status, "cancellation_reason": values.get("cancellation_reason")},
    )
    return await get_loan(db, loan_id)


async def secure_search(db: AsyncSession, mobile: str, id_last4: str) -> SecureSearchResponse:
    """Privacy-reduced lookup for applicants; returns at most the newest match."""
    mobile = (mobile or "").strip()
    id_last4 = (id_last4 or "").strip()
    if not mobile:
        raise ValidationError("Mobile number is required", details={"field": "mobile"})
    if len(id_last4) != 4:
        raise ValidationError(
            "Exactly the last 4 characters of the personal id are required",
            details={"field": "id_last4"},
        )

    stmt = (
        select(LoanApplication)
        .where(LoanApplication.mobile.contains(mobile))
        .options(selectinload(LoanApplication.assigned_to))
        .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc())
    )
    candidates = (await db.execute(stmt)).scalars().all()
    for loan in candidates:
        details = LoanDetails.from_raw(loan.details)
        if not details.personal_id_ends_with(id_last4):
            continue
        return SecureSearchResponse(
            found=True,
            loan=SecureSearchMatch(
                product=details.product,
                amount=details.amount,
                branch=loan.branch,
                expert=loan.assigned_to.username if loan.assigned_to else None,
                status=loan.status,
            ),
        )
    return SecureSearchResponse(found=False)


async def refresh_verification(
    db: AsyncSession,
    loan_id: int,
    client: VerificationSourceClient | None = None,
) -> VerificationRefresh:
    loan = await get_loan(db, loan_id, with_relations=False)
    personal_id = LoanDetails.from_raw(loan.details).personal_id
    if not personal_id:
        raise ValidationError(
            "Loan application has no personal id to verify",
            details={"loan_id": loan_id, "field": "personal_id"},
        )
    client = client or VerificationSourceClient()
    verified = await client.lookup(personal_id)
    if verified == bool(loan.verification_status):
        return VerificationRefresh(verified=verified, changed=False)

    await db.execute(
        update(LoanApplication)
        .where(LoanApplication.id == loan_id)
        .values(verification_status=verified)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("Verification status for loan %s changed to %s", loan_id, verified)
    return VerificationRefresh(verified=verified, changed=True)


def _day_start(value) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


async def list_loans(
    db: AsyncSession,
    viewer: Viewer,
    filters: LoanListFilters | None = None,
    *,
    page: int = 1,
    limit: int = 20,
) -> LoanListResponse:
    filters = filters or LoanListFilters()
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    scope = visibility_scope(viewer)
    if scope.no_branches:
        return LoanListResponse(
            loans=[],
            pagination=Pagination(page=1, limit=limit, total=0, pages=0),
            no_branches=True,
        )

    conditions = [scope.predicate]
    search = search_predicate(filters.search)
    if search is not None:
        conditions.append(search)
    if filters.date_from:
        conditions.append(LoanApplication.created_at >= _day_start(filters.date_from))
    if filters.date_to:
        # Inclusive of the whole end day.
        conditions.append(LoanApplication.created_at < _day_start(filters.date_to) + timedelta(days=1))
    if filters.verified_only:
        conditions.append(LoanApplication.verification_status.is_(True))
    where_clause = and_(*conditions)

    total = (
        await db.execute(select(func.count(LoanApplication.id)).where(where_clause))
    ).scalar_one()
    stmt = (
        select(LoanApplication)
        .where(where_clause)
        .options(*_loan_options())
        .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    loans = (await db.execute(stmt)).scalars().all()
    return LoanListResponse(
        loans=[serialize_loan(loan) for loan in loans],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


async def get_visible_loan(db: AsyncSession, loan_id: int, viewer: Viewer) -> LoanApplication:
    """Single-loan read honouring the same visibility rules as the listing."""
    scope = visibility_scope(viewer)
    stmt = (
        select(LoanApplication)
        .where(LoanApplication.id == loan_id, scope.predicate)
        .options(*_loan_options())
        .execution_options(populate_existing=True)
    )
    loan = (await db.execute(stmt)).scalar_one_or_none()
    if loan is None:
        raise NotFound("Loan application not found", details={"loan_id": loan_id})
    return loan


async def ingest_submission(db: AsyncSession, payload: dict[str, Any]) -> LoanApplication:
    """Upsert a directly pushed form submission."""
    mapped = map_submission(payload)
    loan_id = await upsert_application(db, mapped)
    await db.commit()
    logger.info("Ingested form submission %s as loan %s", mapped.wp_entry_id, loan_id)
    return await get_loan(db, loan_id, with_relations=False)
