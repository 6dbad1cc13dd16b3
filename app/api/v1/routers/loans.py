from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import limiter
from app.core.settings import settings
from app.models import User
from app.schemas.assignment import AssignmentRequestDetail
from app.schemas.loan import (
    AssignLoanRequest,
    CloseLoanRequest,
    LoanApplicationOut,
    LoanListFilters,
    LoanListResponse,
    LoanStatsResponse,
    ReassignLoanRequest,
    SecureSearchResponse,
    VerificationRefreshResponse,
)
from app.services import assignment_requests, authz, loan_lifecycle, loan_stats, loan_views
from app.services.loan_visibility import Viewer

router = APIRouter(prefix="/loans", tags=["loans"])


@router.get("", response_model=LoanListResponse)
async def list_loans(
    search: str | None = Query(default=None, max_length=200),
    date_from: date | None = None,
    date_to: date | None = None,
    verified_only: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=loan_lifecycle.MAX_PAGE_SIZE),
    viewer: Viewer = Depends(deps.get_viewer),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanListResponse:
    filters = LoanListFilters(search=search, date_from=date_from, date_to=date_to, verified_only=verified_only)
    return await loan_lifecycle.list_loans(db, viewer, filters, page=page, limit=limit)


@router.get("/stats", response_model=LoanStatsResponse)
async def read_stats(
    viewer: Viewer = Depends(deps.get_viewer),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanStatsResponse:
    return await loan_stats.loan_stats(db, viewer)


@router.get("/search-secure", response_model=SecureSearchResponse)
@limiter.limit(lambda: settings.login_rate_limit)
async def secure_search(
    request: Request,
    mobile: str = Query(min_length=1, max_length=64),
    id_last4: str = Query(max_length=16),
    db: AsyncSession = Depends(deps.get_db_session),
) -> SecureSearchResponse:
    return await loan_lifecycle.secure_search(db, mobile, id_last4)


@router.get("/{loan_id}", response_model=LoanApplicationOut)
async def read_loan(
    loan_id: int,
    viewer: Viewer = Depends(deps.get_viewer),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationOut:
    loan = await loan_lifecycle.get_visible_loan(db, loan_id, viewer)
    return loan_views.serialize_loan(loan)


@router.post("/{loan_id}/take", response_model=LoanApplicationOut)
async def take_loan(
    loan_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationOut:
    loan = await loan_lifecycle.claim(db, loan_id, current_user)
    return loan_views.serialize_loan(loan)


@router.post("/{loan_id}/assign", response_model=LoanApplicationOut)
async def assign_loan(
    loan_id: int,
    payload: AssignLoanRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationOut:
    loan = await loan_lifecycle.assign(db, loan_id, payload.officer_id, current_user)
    return loan_views.serialize_loan(loan)


@router.post("/{loan_id}/reassign", response_model=LoanApplicationOut)
async def reassign_loan(
    loan_id: int,
    payload: ReassignLoanRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationOut:
    officer_id = payload.officer_id if "officer_id" in payload.model_fields_set else loan_lifecycle.UNSET
    loan = await loan_lifecycle.reassign(
        db,
        loan_id,
        current_user,
        branch=payload.branch,
        officer_id=officer_id,
    )
    return loan_views.serialize_loan(loan)


@router.post("/{loan_id}/status", response_model=LoanApplicationOut)
async def close_loan(
    loan_id: int,
    payload: CloseLoanRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationOut:
    loan = await loan_lifecycle.close(
        db,
        loan_id,
        payload.status,
        current_user,
        reason=payload.cancellation_reason,
    )
    return loan_views.serialize_loan(loan)


@router.post("/{loan_id}/verify", response_model=VerificationRefreshResponse)
async def refresh_verification(
    loan_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> VerificationRefreshResponse:
    authz.ensure(authz.can_refresh_verification(current_user), "refresh verification")
    await loan_lifecycle.get_visible_loan(db, loan_id, Viewer.from_user(current_user))
    outcome = await loan_lifecycle.refresh_verification(db, loan_id)
    return VerificationRefreshResponse(verified=outcome.verified, changed=outcome.changed)


@router.post("/{loan_id}/request", response_model=AssignmentRequestDetail, status_code=201)
async def request_assignment(
    loan_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AssignmentRequestDetail:
    request = await assignment_requests.create_request(db, loan_id, current_user)
    return loan_views.serialize_request(request)
