from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import Role
from app.models import User
from app.schemas.users import AdminPasswordChange, UserOut, UserUpsertRequest
from app.services import users

router = APIRouter(prefix="/users", tags=["users"])

_require_admin = deps.require_roles(Role.ADMIN, Role.ADMIN_EDITOR)


@router.get("", response_model=list[UserOut])
async def list_users(
    current_user: User = Depends(_require_admin),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[UserOut]:
    return [UserOut.from_user(user) for user in await users.list_users(db)]


@router.post("", response_model=UserOut)
async def upsert_user(
    payload: UserUpsertRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> UserOut:
    return UserOut.from_user(await users.upsert_user(db, payload, current_user))


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> None:
    await users.delete_user(db, user_id, current_user)


@router.post("/{user_id}/change-password")
async def change_password(
    user_id: int,
    payload: AdminPasswordChange,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(deps.get_db_session),
) -> dict:
    await users.change_password(db, user_id, payload.new_password, current_user)
    return {"user_id": user_id, "password_changed": True}
