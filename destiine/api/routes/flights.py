"""
Flight routes

Catalog lookups (cities, bookable date range, search, seat map) and the
reservation flow: reserve a hold, then look it up again before paying.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from destiine.core.config import settings
from destiine.core.rate_limit import booking_rate_key, limiter
from destiine.schemas.booking import FlightReservedQuery, FlightReserveRequest
from destiine.schemas.user import SessionInfo
from destiine.services.fares import preview_flight_price
from destiine.services.registry import BookingServices
from destiine.api.deps import (
    booking_response,
    get_current_session,
    get_flight_orchestrator,
    get_services,
)

router = APIRouter()


@router.get("/available-cities")
async def available_cities(
    search_query: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    services: BookingServices = Depends(get_services),
):
    cities = await services.catalog.search_cities(search_query, limit)
    return {"success": True, "message": "Available cities fetched successfully", "data": cities}


@router.get("/date-range")
async def flight_date_range(services: BookingServices = Depends(get_services)):
    """Earliest and latest bookable departure."""
    window = await services.catalog.flight_date_range(services.clock())
    return {
        "success": True,
        "message": "Success",
        "data": {"from": window["from"].isoformat(), "to": window["to"].isoformat()},
    }


@router.get("/search")
async def search_flights(
    origin: str = Query(..., min_length=3, max_length=3),
    destination: str = Query(..., min_length=3, max_length=3),
    departure_date: Optional[date] = None,
    flight_class: str = "economy",
    adults: int = Query(1, ge=1, le=9),
    children: int = Query(0, ge=0, le=9),
    infants: int = Query(0, ge=0, le=9),
    services: BookingServices = Depends(get_services),
):
    counts = {"adult": adults, "child": children, "infant": infants}
    offers = await services.catalog.search_flights(
        origin, destination, departure_date, seats_needed=sum(counts.values()), flight_class=flight_class
    )
    now = services.clock()
    results = []
    for offer in offers:
        if offer.bookable_until <= now:
            continue
        price = preview_flight_price(offer, flight_class, counts)
        if price is None:
            continue
        item = offer.to_dict()
        item["flight_class"] = flight_class
        item["total_price"] = str(price)
        results.append(item)
    return {"success": True, "message": f"{len(results)} flights found", "data": results}


@router.get("/{flight_code}/seats")
async def seat_map(
    flight_code: str,
    departure_date: date,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_flight_orchestrator),
):
    result = await orchestrator.seat_availability(session, flight_code, departure_date)
    return booking_response(result)


@router.post("/reserve")
@limiter.limit(settings.RATE_LIMIT_BOOKING, key_func=booking_rate_key)
async def reserve_flight(
    request: Request,
    payload: FlightReserveRequest,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_flight_orchestrator),
):
    result = await orchestrator.reserve(session, payload)
    return booking_response(result)


@router.post("/reserved")
async def reserved_flight(
    payload: FlightReservedQuery,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_flight_orchestrator),
):
    result = await orchestrator.get_reserved(session, payload)
    return booking_response(result)
