from enum import Enum

from pydantic import BaseModel, Field

from app.schemas.users import UserOut


class AuthMode(str, Enum):
    LOCAL = "local"
    DOMAIN = "domain"


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=256)
    auth_mode: AuthMode = AuthMode.DOMAIN


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
