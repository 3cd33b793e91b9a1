"""
Member models.

Members are the patrons who borrow copies. Only Active members may check
out; the open-loan count is derived from the loan ledger, never stored.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..database.schema import MemberStatusEnum

MemberStatus = MemberStatusEnum


class MemberCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=30)
    membership_type: str = Field(default="Standard", max_length=50)
    status: MemberStatus = MemberStatus.ACTIVE
    pin: str | None = Field(None, pattern=r"^\d{4,8}$")
    qr_code: str | None = Field(None, max_length=200)


class MemberUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = None
    membership_type: str | None = None
    status: MemberStatus | None = None
    pin: str | None = Field(None, pattern=r"^\d{4,8}$")
    qr_code: str | None = None


class Member(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str | None = None
    phone: str | None = None
    membership_type: str = "Standard"
    status: MemberStatus
    qr_code: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE
