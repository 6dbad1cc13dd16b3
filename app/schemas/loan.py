from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LoanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class CloseStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class UserBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    display_name: str | None = None


class PendingRequestBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    requested_by_id: int
    requested_by: UserBrief | None = None
    created_at: datetime | None = None


class LoanApplicationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wp_entry_id: str
    first_name: str
    last_name: str
    email: str
    mobile: str
    branch: str
    status: LoanStatus
    assigned_to_id: int | None = None
    assigned_to: UserBrief | None = None
    verification_status: bool
    details: dict[str, Any] | None = None
    closed_at: datetime | None = None
    closed_by_id: int | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    pending_requests: list[PendingRequestBrief] = Field(default_factory=list)


class LoanListFilters(BaseModel):
    search: str | None = Field(default=None, max_length=200)
    date_from: date | None = None
    date_to: date | None = None
    verified_only: bool = False


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class LoanListResponse(BaseModel):
    loans: list[LoanApplicationOut]
    pagination: Pagination
    no_branches: bool = False


class AssignLoanRequest(BaseModel):
    officer_id: int = Field(ge=1)


class ReassignLoanRequest(BaseModel):
    """``officer_id`` omitted leaves the assignee alone; explicit null unassigns."""

    branch: str | None = Field(default=None, max_length=255)
    officer_id: int | None = Field(default=None, ge=1)


class CloseLoanRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: CloseStatus
    cancellation_reason: str | None = Field(default=None, max_length=2000)


class VerificationRefreshResponse(BaseModel):
    verified: bool
    changed: bool


class SecureSearchMatch(BaseModel):
    product: str | None = None
    amount: str | None = None
    branch: str
    expert: str | None = None
    status: LoanStatus


class SecureSearchResponse(BaseModel):
    found: bool
    loan: SecureSearchMatch | None = None


class LoanStatsResponse(BaseModel):
    today: int
    month: int
    pending: int
    approved: int
    rejected: int


class WebhookAck(BaseModel):
    id: int
    wp_entry_id: str
