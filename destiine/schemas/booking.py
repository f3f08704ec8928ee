"""
Booking schemas

Request bodies keep passenger and guest entries loosely typed so the
orchestrator can report per-entry field errors in its own result format;
PassengerForm / GuestForm are applied there, one entry at a time.
"""
from datetime import date
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, EmailStr, Field, field_validator


class PassengerForm(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    type: Literal["adult", "child", "infant"] = "adult"
    date_of_birth: Optional[date] = None
    gender: Optional[Literal["male", "female", "other"]] = None
    nationality: Optional[str] = Field(None, max_length=64)
    passport_number: Optional[str] = Field(None, max_length=32)
    passport_expiry: Optional[date] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=32)
    seat: str = Field(..., min_length=1)

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class GuestForm(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=32)
    is_primary: bool = False

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class FlightReserveRequest(BaseModel):
    flight_code: str
    departure_date: date
    passengers: List[Dict[str, Any]] = Field(default_factory=list)


class HotelReserveRequest(BaseModel):
    slug: str
    check_in: date
    check_out: date
    rooms: List[str] = Field(default_factory=list)
    guests: List[Dict[str, Any]] = Field(default_factory=list)
    payment_method: Literal["card", "cash"] = "card"


class FlightReservedQuery(BaseModel):
    flight_code: str
    departure_date: date


class HotelReservedQuery(BaseModel):
    slug: str
    check_in: date
    check_out: date
