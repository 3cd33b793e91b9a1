"""Small request bodies used only by the HTTP routes."""

from pydantic import BaseModel, ConfigDict, Field

from ..models.book import CopyStatus


class _CamelBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CopyStatusUpdate(_CamelBody):
    status: CopyStatus


class CopyMove(_CamelBody):
    shelf_id: int | None = Field(None, alias="shelfId")


class ShelfReassign(_CamelBody):
    target_shelf_id: int = Field(..., alias="targetShelfId")


class LoginRequest(_CamelBody):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class PasswordChange(_CamelBody):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword", min_length=8)


class MemberLogin(_CamelBody):
    email: str = Field(..., min_length=3)
    pin: str = Field(..., min_length=1)
