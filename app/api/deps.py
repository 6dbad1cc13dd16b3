from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import set_user_id
from app.core.permissions import Role
from app.core.security import decode_token
from app.db.session import get_db
from app.models import User
from app.services.directory import DirectoryAuthenticator, UnconfiguredDirectory
from app.services.loan_visibility import Viewer
from app.services.scheduler import SyncScheduler


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")

_default_directory = UnconfiguredDirectory()


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    set_user_id(str(user.id))
    return user


async def get_viewer(current_user: User = Depends(get_current_user)) -> Viewer:
    return Viewer.from_user(current_user)


def require_roles(*roles: Role) -> Callable:
    allowed = {Role.parse(role) for role in roles}

    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        if Role.parse(current_user.role) not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "forbidden",
                    "message": "Role not permitted",
                    "details": {"role": current_user.role},
                },
            )
        return current_user

    return dependency


def get_directory(request: Request) -> DirectoryAuthenticator:
    return getattr(request.app.state, "directory", None) or _default_directory


def get_sync_scheduler(request: Request) -> SyncScheduler | None:
    return getattr(request.app.state, "sync_scheduler", None)
