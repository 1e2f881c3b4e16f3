from datetime import datetime
from typing import Optional

from pydantic import ConfigDict, Field

from .base import CamelModel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserModel(CamelModel):
    id: int
    email: str
    is_active: bool
    created_at: datetime
    updated_at: datetime


class UserSummaryModel(CamelModel):
    id: int
    email: str


class UserCreateModel(CamelModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)


class UserCreatedModel(CamelModel):
    id: int
    email: str
    temp_password: str = Field(..., description="Shown once; the user should change it.")


class UserUpdateModel(CamelModel):
    """Only these fields can be changed through the API."""

    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    is_active: Optional[bool] = None


class LoginModel(CamelModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1)


class LoginResponseModel(CamelModel):
    token: str
    user: UserSummaryModel
