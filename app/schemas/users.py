from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.core.permissions import Role


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    id: int
    username: str
    role: Role
    branches: str
    display_name: str | None = None
    email: str | None = None
    has_local_password: bool = False
    created_at: datetime | None = None

    @classmethod
    def from_user(cls, user) -> "UserOut":
        return cls.model_validate(user).model_copy(update={"has_local_password": bool(user.hashed_password)})


class UserUpsertRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    username: str = Field(min_length=1, max_length=150)
    role: Role = Role.OFFICER
    branches: str = Field(default="", max_length=2000)
    display_name: str | None = Field(default=None, max_length=255)
    email: EmailStr | None = None
    password: str | None = Field(default=None, max_length=128)


class AdminPasswordChange(BaseModel):
    new_password: str = Field(min_length=1, max_length=128)
