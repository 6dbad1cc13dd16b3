from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import Role
from app.models import User
from app.schemas.reports import DashboardReport
from app.services import loan_stats

router = APIRouter(prefix="/reports", tags=["reports"])

_require_reporting = deps.require_roles(
    Role.MANAGER, Role.MANAGER_VIEWER, Role.ADMIN, Role.ADMIN_EDITOR
)


@router.get("/dashboard", response_model=DashboardReport)
async def read_dashboard(
    branch: str | None = Query(default=None, max_length=255),
    current_user: User = Depends(_require_reporting),
    db: AsyncSession = Depends(deps.get_db_session),
) -> DashboardReport:
    return await loan_stats.dashboard_report(db, branch)
