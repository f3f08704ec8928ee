"""
Hotel routes
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from destiine.core.config import settings
from destiine.core.rate_limit import booking_rate_key, limiter
from destiine.schemas.booking import HotelReservedQuery, HotelReserveRequest
from destiine.schemas.user import SessionInfo
from destiine.services.registry import BookingServices
from destiine.api.deps import (
    booking_response,
    get_current_session,
    get_hotel_orchestrator,
    get_services,
)

router = APIRouter()


@router.get("/available-places")
async def available_places(
    search_query: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    services: BookingServices = Depends(get_services),
):
    places = await services.catalog.search_places(search_query, limit)
    return {"success": True, "message": "Available places fetched successfully", "data": places}


@router.get("/{slug}/availability")
async def room_availability(
    slug: str,
    check_in: date,
    check_out: date,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_hotel_orchestrator),
):
    result = await orchestrator.room_availability(session, slug, check_in, check_out)
    return booking_response(result)


@router.post("/reserve")
@limiter.limit(settings.RATE_LIMIT_BOOKING, key_func=booking_rate_key)
async def reserve_rooms(
    request: Request,
    payload: HotelReserveRequest,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_hotel_orchestrator),
):
    result = await orchestrator.reserve(session, payload)
    return booking_response(result)


@router.post("/reserved")
async def reserved_hotel(
    payload: HotelReservedQuery,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_hotel_orchestrator),
):
    result = await orchestrator.get_reserved(session, payload)
    return booking_response(result)
