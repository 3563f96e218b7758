from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi_users import schemas
from pydantic import BaseModel, Field

from core.policy import Role


class UserRead(schemas.BaseUser[UUID]):
    name: str
    role: str
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class UserCreate(schemas.BaseUserCreate):
    name: str = Field(min_length=1, max_length=32)
    role: Role = Role.STAFF

    class Config:
        use_enum_values = True


class UserUpdate(schemas.BaseUserUpdate):
    name: Optional[str] = Field(default=None, min_length=1, max_length=32)
    role: Optional[Role] = None

    class Config:
        use_enum_values = True


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(min_length=6)
