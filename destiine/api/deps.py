"""
API dependencies

Two ways to identify the caller:
- get_current_user loads the account row and answers 401 itself (auth routes).
- get_current_session only reads the token claims and yields None when they
  are missing; booking orchestrators turn None into their own 401 result.
"""
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from destiine.core.database import get_db
from destiine.core.security import decode_access_token
from destiine.models.user import User
from destiine.schemas.user import SessionInfo
from destiine.services.booking_service import (
    BookingOrchestrator,
    BookingResult,
    FlightBookingOrchestrator,
    HotelBookingOrchestrator,
)
from destiine.services.registry import BookingServices

bearer = HTTPBearer()
optional_bearer = HTTPBearer(auto_error=False)


def user_id_from(claims: Optional[Dict[str, Any]]) -> Optional[int]:
    if not claims:
        return None
    try:
        return int(claims.get("sub"))
    except (TypeError, ValueError):
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    user_id = user_id_from(decode_access_token(credentials.credentials))
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account not available")
    return user


async def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
) -> Optional[SessionInfo]:
    if not credentials:
        return None
    claims = decode_access_token(credentials.credentials)
    user_id = user_id_from(claims)
    if user_id is None:
        return None
    return SessionInfo(user_id=user_id, email=claims.get("email", ""), name=claims.get("name", ""))


def get_services(request: Request) -> BookingServices:
    return request.app.state.services


def get_flight_orchestrator(services: BookingServices = Depends(get_services)) -> FlightBookingOrchestrator:
    return services.flights


def get_hotel_orchestrator(services: BookingServices = Depends(get_services)) -> HotelBookingOrchestrator:
    return services.hotels


def get_booking_orchestrator(services: BookingServices = Depends(get_services)) -> BookingOrchestrator:
    return services.bookings


def booking_response(result: BookingResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.to_dict())
