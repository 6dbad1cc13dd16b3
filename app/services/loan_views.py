"""API views built from ORM rows, touching only relationships that were eagerly loaded."""

from __future__ import annotations

from sqlalchemy import inspect

from app.models.assignment_request import AssignmentRequest
from app.models.loan_application import LoanApplication
from app.models.user import User
from app.schemas.assignment import AssignmentRequestDetail
from app.schemas.loan import LoanApplicationOut, PendingRequestBrief, UserBrief
from app.services.loan_details import coerce_details


def _loaded(obj, name: str) -> bool:
    return name not in inspect(obj).unloaded


def user_brief(user: User | None) -> UserBrief | None:
    if user is None:
        return None
    return UserBrief(id=user.id, username=user.username, display_name=user.display_name)


def serialize_loan(loan: LoanApplication) -> LoanApplicationOut:
    pending: list[PendingRequestBrief] = []
    if _loaded(loan, "assignment_requests"):
        for request in loan.assignment_requests:
            if request.status != "pending":
                continue
            pending.append(
                PendingRequestBrief(
                    id=request.id,
                    requested_by_id=request.requested_by_id,
                    requested_by=user_brief(request.requested_by) if _loaded(request, "requested_by") else None,
                    created_at=request.created_at,
                )
            )
    return LoanApplicationOut(
        id=loan.id,
        wp_entry_id=loan.wp_entry_id,
        first_name=loan.first_name,
        last_name=loan.last_name,
        email=loan.email,
        mobile=loan.mobile,
        branch=loan.branch,
        status=loan.status,
        assigned_to_id=loan.assigned_to_id,
        assigned_to=user_brief(loan.assigned_to) if _loaded(loan, "assigned_to") else None,
        verification_status=bool(loan.verification_status),
        details=coerce_details(loan.details),
        closed_at=loan.closed_at,
        closed_by_id=loan.closed_by_id,
        cancellation_reason=loan.cancellation_reason,
        created_at=loan.created_at,
        pending_requests=pending,
    )


def serialize_request(request: AssignmentRequest) -> AssignmentRequestDetail:
    return AssignmentRequestDetail(
        id=request.id,
        loan_id=request.loan_id,
        requested_by_id=request.requested_by_id,
        requested_by=user_brief(request.requested_by) if _loaded(request, "requested_by") else None,
        status=request.status,
        handled_by_id=request.handled_by_id,
        handled_at=request.handled_at,
        created_at=request.created_at,
        loan=serialize_loan(request.loan) if _loaded(request, "loan") and request.loan else None,
    )
