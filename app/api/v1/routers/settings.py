
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.models import User
from app.schemas.settings import AppSettingsOut, AppSettingsUpdate, ConnectionTestResult, PublicSettings
from app.services import authz
from app.services import settings as settings_service
from app.services.directory import DirectoryAuthenticator
from app.services.scheduler import SyncScheduler

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("", response_model=AppSettingsOut)
async def read_settings(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AppSettingsOut:
    authz.ensure(authz.can_manage_settings(current_user), "view settings")
    row = await settings_service.get_app_settings(db)
    await db.commit()
    return settings_service.settings_view(row)


@router.put("", response_model=AppSettingsOut)
async def update_settings(
    payload: AppSettingsUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
    scheduler: SyncScheduler | None = Depends(deps.get_sync_scheduler),
) -> AppSettingsOut:
    row, interval_changed = await settings_service.update_app_settings(db, payload, current_user)
    if interval_changed and scheduler is not None and scheduler.is_running:
        await scheduler.reschedule(row.sync_interval)
    return settings_service.settings_view(row)


@router.get("/public", response_model=PublicSettings)
async def read_public_settings(db: AsyncSession = Depends(deps.get_db_session)) -> PublicSettings:
    public = await settings_service.public_settings(db)
    await db.commit()
    return public


@router.post("/test-directory", response_model=ConnectionTestResult)
async def test_directory(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
    directory: DirectoryAuthenticator = Depends(deps.get_directory),
) -> ConnectionTestResult:
    message = await settings_service.test_directory_connection(db, directory, current_user)
    return ConnectionTestResult(success=True, message=message)
