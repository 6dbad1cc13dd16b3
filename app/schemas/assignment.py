from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from app.schemas.loan import LoanApplicationOut, UserBrief


class AssignmentRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ArbitrationAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class HandleRequestBody(BaseModel):
    action: ArbitrationAction


class AssignmentRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    loan_id: int
    requested_by_id: int
    requested_by: UserBrief | None = None
    status: AssignmentRequestStatus
    handled_by_id: int | None = None
    handled_at: datetime | None = None
    created_at: datetime


class AssignmentRequestDetail(AssignmentRequestOut):
    loan: LoanApplicationOut | None = None
