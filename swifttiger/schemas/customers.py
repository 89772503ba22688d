import re
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator


ZIP_RE = re.compile(r"^[0-9]{5}(-[0-9]{4})?$")


class CustomerAddress(BaseModel):
    street: str = Field(min_length=5, max_length=200)
    city: str = Field(min_length=2, max_length=100)
    state: str = Field(min_length=2, max_length=50)
    zip_code: str
    country: Optional[str] = "USA"
    place_id: Optional[str] = None

    @field_validator("zip_code")
    @classmethod
    def valid_zip(cls, v: str) -> str:
        if not ZIP_RE.match(v.strip()):
            raise ValueError("zip_code must be 12345 or 12345-6789")
        return v.strip()


class CustomerBase(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(min_length=10, max_length=20)
    address: CustomerAddress
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class CustomerCreate(CustomerBase):
    geocode: bool = True


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, min_length=10, max_length=20)
    address: Optional[CustomerAddress] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    is_active: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v
