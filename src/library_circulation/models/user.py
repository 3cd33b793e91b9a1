"""Staff user models. The password hash never leaves the repository."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..database.schema import UserRoleEnum, UserStatusEnum

UserRole = UserRoleEnum
UserStatus = UserStatusEnum


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    name: str | None = Field(None, max_length=200)
    role: UserRole = UserRole.STAFF
    status: UserStatus = UserStatus.ACTIVE


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    name: str | None = None
    role: UserRole | None = None
    status: UserStatus | None = None


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    name: str | None = None
    role: UserRole
    status: UserStatus
    created_at: datetime | None = None
    updated_at: datetime | None = None
