from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import limiter
from app.core.security import create_access_token
from app.core.settings import settings
from app.models import User
from app.schemas.auth import LoginRequest, TokenResponse
from app.schemas.users import UserOut
from app.services import users
from app.services.directory import DirectoryAuthenticator

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
@limiter.limit(lambda: settings.login_rate_limit)
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(deps.get_db_session),
    directory: DirectoryAuthenticator = Depends(deps.get_directory),
) -> TokenResponse:
    user = await users.login(
        db,
        credentials.username,
        credentials.password,
        credentials.auth_mode.value,
        directory,
    )
    return TokenResponse(access_token=create_access_token(str(user.id)), user=UserOut.from_user(user))


@router.get("/me", response_model=UserOut)
async def read_me(current_user: User = Depends(deps.get_current_user)) -> UserOut:
    return UserOut.from_user(current_user)
