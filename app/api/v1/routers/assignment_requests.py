from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import Role
from app.models import User
from app.schemas.assignment import AssignmentRequestDetail, HandleRequestBody
from app.services import assignment_requests, loan_views
from app.services.loan_visibility import Viewer

router = APIRouter(prefix="/assignment-requests", tags=["assignment-requests"])

_require_reviewer = deps.require_roles(
    Role.MANAGER, Role.MANAGER_VIEWER, Role.ADMIN, Role.ADMIN_EDITOR
)


@router.get("", response_model=list[AssignmentRequestDetail])
async def list_pending_requests(
    current_user: User = Depends(_require_reviewer),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[AssignmentRequestDetail]:
    requests = await assignment_requests.list_pending(db, Viewer.from_user(current_user))
    return [loan_views.serialize_request(request) for request in requests]


@router.post("/{request_id}/handle", response_model=AssignmentRequestDetail)
async def handle_request(
    request_id: int,
    payload: HandleRequestBody,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AssignmentRequestDetail:
    request = await assignment_requests.handle(db, request_id, payload.action.value, current_user)
    return loan_views.serialize_request(request)
