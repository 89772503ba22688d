from typing import Optional, List
from pydantic import BaseModel, EmailStr, Field, field_validator

from ..models.models import USER_ROLES


def _check_role(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in USER_ROLES:
        raise ValueError(f"role must be one of {', '.join(USER_ROLES)}")
    return v


class UserCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=255)
    role: str = "technician"
    phone: Optional[str] = None
    skills: List[str] = []
    max_daily_jobs: Optional[int] = Field(default=None, ge=1, le=50)
    home_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    home_lng: Optional[float] = Field(default=None, ge=-180, le=180)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("role")
    @classmethod
    def valid_role(cls, v: str) -> str:
        return _check_role(v)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None
    skills: Optional[List[str]] = None
    max_daily_jobs: Optional[int] = Field(default=None, ge=1, le=50)
    home_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    home_lng: Optional[float] = Field(default=None, ge=-180, le=180)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @field_validator("role")
    @classmethod
    def valid_role(cls, v: Optional[str]) -> Optional[str]:
        return _check_role(v)
