"""
Traveller account schemas
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator


class TravellerBase(BaseModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    phone: Optional[str] = Field(None, max_length=32)


class UserCreate(TravellerBase):
    password: str = Field(..., min_length=8, max_length=72)  # bcrypt reads 72 bytes

    @field_validator("password")
    @classmethod
    def password_has_letter_and_digit(cls, v: str) -> str:
        if not any(c.isalpha() for c in v) or not any(c.isdigit() for c in v):
            raise ValueError("must contain a letter and a digit")
        return v


class UserResponse(TravellerBase):
    id: int
    full_name: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class SessionInfo(BaseModel):
    """Who is calling. The booking core reads nothing else about the user."""
    user_id: int
    email: str
    name: str = ""
