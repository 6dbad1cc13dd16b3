from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models import User
from app.schemas.sync import SyncRunResponse, SyncStatusResponse
from app.services import authz, sync_reconciler
from app.services.scheduler import SyncScheduler

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/run", response_model=SyncRunResponse)
async def run_sync(
    current_user: User = Depends(deps.get_current_user),
    scheduler: SyncScheduler | None = Depends(deps.get_sync_scheduler),
) -> SyncRunResponse:
    authz.ensure(authz.can_trigger_sync(current_user), "trigger sync")
    if scheduler is not None:
        result = await scheduler.trigger()
    else:
        result = await sync_reconciler.SyncReconciler().run()
    return SyncRunResponse(**result.as_dict())


@router.get("/status", response_model=SyncStatusResponse)
async def read_sync_status(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
    scheduler: SyncScheduler | None = Depends(deps.get_sync_scheduler),
) -> SyncStatusResponse:
    status = await sync_reconciler.sync_status(db)
    await db.commit()
    return SyncStatusResponse(**status, scheduler_running=bool(scheduler and scheduler.is_running))
