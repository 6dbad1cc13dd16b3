from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import Conflict, NotFound, ValidationError
from app.core.permissions import UNRESTRICTED_READ_ROLES
from app.models.assignment_request import AssignmentRequest
from app.models.loan_application import OPEN_STATUSES, TERMINAL_STATUSES, LoanApplication
from app.models.user import User
from app.services import authz
from app.services.audit import record_audit_event
from app.services.loan_visibility import Viewer, branch_filter


logger = logging.getLogger(__name__)


async def reject_pending_requests(
    db: AsyncSession,
    loan_id: int,
    *,
    handled_by_id: int,
    handled_at: datetime | None = None,
    exclude_request_id: int | None = None,
) -> int:
    """Reject every still-pending request for a loan inside the caller's transaction."""
    conditions = [AssignmentRequest.loan_id == loan_id, AssignmentRequest.status == "pending"]
    if exclude_request_id is not None:
        conditions.append(AssignmentRequest.id != exclude_request_id)
    result = await db.execute(
        update(AssignmentRequest)
        .where(*conditions)
        .values(
            status="rejected",
            handled_by_id=handled_by_id,
            handled_at=handled_at or datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def get_request(db: AsyncSession, request_id: int) -> AssignmentRequest:
    stmt = (
        select(AssignmentRequest)
        .where(AssignmentRequest.id == request_id)
        .options(
            selectinload(AssignmentRequest.loan),
            selectinload(AssignmentRequest.requested_by),
        )
        .execution_options(populate_existing=True)
    )
    request = (await db.execute(stmt)).scalar_one_or_none()
    if request is None:
        raise NotFound("Assignment request not found", details={"request_id": request_id})
    return request


async def create_request(db: AsyncSession, loan_id: int, actor: User) -> AssignmentRequest:
    authz.ensure(authz.can_request(actor), "request assignment")
    loan = await db.get(LoanApplication, loan_id, populate_existing=True)
    if loan is None:
        raise NotFound("Loan application not found", details={"loan_id": loan_id})
    if loan.status in TERMINAL_STATUSES:
        raise Conflict(
            "Loan application is already closed",
            details={"loan_id": loan_id, "reason": "terminal"},
        )
    if loan.assigned_to_id is not None:
        raise Conflict(
            "Loan application is already assigned",
            details={"loan_id": loan_id, "reason": "already_assigned"},
        )

    duplicate = await db.execute(
        select(AssignmentRequest.id).where(
            AssignmentRequest.loan_id == loan_id,
            AssignmentRequest.requested_by_id == actor.id,
            AssignmentRequest.status == "pending",
        )
    )
    if duplicate.scalar_one_or_none() is not None:
        raise Conflict(
            "A pending request for this loan already exists",
            details={"loan_id": loan_id, "reason": "duplicate_request"},
        )

    request = AssignmentRequest(loan_id=loan_id, requested_by_id=actor.id, status="pending")
    db.add(request)
    try:
        await db.commit()
    except IntegrityError as exc:
        # The partial unique index caught a concurrent duplicate.
        await db.rollback()
        raise Conflict(
            "A pending request for this loan already exists",
            details={"loan_id": loan_id, "reason": "duplicate_request"},
        ) from exc
    record_audit_event(
        actor_id=actor.id,
        action="assignment_request.created",
        resource_type="assignment_request",
        resource_id=request.id,
        new_value={"loan_id": loan_id},
    )
    return await get_request(db, request.id)


async def list_pending(db: AsyncSession, viewer: Viewer) -> list[AssignmentRequest]:
    stmt = (
        select(AssignmentRequest)
        .join(LoanApplication, LoanApplication.id == AssignmentRequest.loan_id)
        .where(AssignmentRequest.status == "pending")
        .options(
            selectinload(AssignmentRequest.loan),
            selectinload(AssignmentRequest.requested_by),
        )
        .order_by(AssignmentRequest.created_at.desc(), AssignmentRequest.id.desc())
    )
    if viewer.role not in UNRESTRICTED_READ_ROLES:
        stmt = stmt.where(branch_filter(viewer.branches))
    return list((await db.execute(stmt)).scalars().all())


async def approve(db: AsyncSession, request_id: int, actor: User) -> AssignmentRequest:
    """Assign the loan to the requester, approve the request and reject its siblings.

    All three writes share one transaction; if any guard fails nothing is kept.
    """
    authz.ensure(authz.can_arbitrate(actor), "approve assignment request")
    request = await get_request(db, request_id)
    if request.status != "pending":
        raise Conflict(
            "Assignment request was already handled",
            details={"request_id": request_id, "status": request.status, "reason": "already_handled"},
        )
    loan_id = request.loan_id
    requester_id = request.requested_by_id
    handled_at = datetime.now(timezone.utc)

    loan_result = await db.execute(
        update(LoanApplication)
        .where(
            LoanApplication.id == loan_id,
            LoanApplication.status.in_(OPEN_STATUSES),
            or_(
                and_(LoanApplication.assigned_to_id.is_(None), LoanApplication.status == "pending"),
                LoanApplication.assigned_to_id == requester_id,
            ),
        )
        .values(assigned_to_id=requester_id, status="in_progress")
        .execution_options(synchronize_session=False)
    )
    if loan_result.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Loan application is no longer available for assignment",
            details={"request_id": request_id, "loan_id": loan_id, "reason": "loan_unavailable"},
        )

    request_result = await db.execute(
        update(AssignmentRequest)
        .where(AssignmentRequest.id == request_id, AssignmentRequest.status == "pending")
        .values(status="approved", handled_by_id=actor.id, handled_at=handled_at)
        .execution_options(synchronize_session=False)
    )
    if request_result.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Assignment request was already handled",
            details={"request_id": request_id, "reason": "already_handled"},
        )

    rejected = await reject_pending_requests(
        db,
        loan_id,
        handled_by_id=actor.id,
        handled_at=handled_at,
        exclude_request_id=request_id,
    )
    await db.commit()
    logger.info("Approved assignment request %s; %s competing requests rejected", request_id, rejected)
    record_audit_event(
        actor_id=actor.id,
        action="assignment_request.approved",
        resource_type="assignment_request",
        resource_id=request_id,
        new_value={"loan_id": loan_id, "assigned_to_id": requester_id, "rejected_siblings": rejected},
    )
    return await get_request(db, request_id)


async def reject(db: AsyncSession, request_id: int, actor: User) -> AssignmentRequest:
    authz.ensure(authz.can_arbitrate(actor), "reject assignment request")
    request = await get_request(db, request_id)
    loan_id = request.loan_id
    seen_status = request.status
    result = await db.execute(
        update(AssignmentRequest)
        .where(AssignmentRequest.id == request_id, AssignmentRequest.status == "pending")
        .values(status="rejected", handled_by_id=actor.id, handled_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise Conflict(
            "Assignment request was already handled",
            details={"request_id": request_id, "status": seen_status, "reason": "already_handled"},
        )
    await db.commit()
    record_audit_event(
        actor_id=actor.id,
        action="assignment_request.rejected",
        resource_type="assignment_request",
        resource_id=request_id,
        new_value={"loan_id": loan_id},
    )
    return await get_request(db, request_id)


async def handle(db: AsyncSession, request_id: int, action: str, actor: User) -> AssignmentRequest:
    if action == "approve":
        return await approve(db, request_id, actor)
    if action == "reject":
        return await reject(db, request_id, actor)
    raise ValidationError("Unsupported action", details={"action": action, "allowed": ["approve", "reject"]})
