"""
Booking history routes (flights and hotels together)
"""
from typing import Optional

from fastapi import APIRouter, Depends

from destiine.schemas.user import SessionInfo
from destiine.api.deps import booking_response, get_booking_orchestrator, get_current_session

router = APIRouter()


@router.get("")
async def list_bookings(
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_booking_orchestrator),
):
    result = await orchestrator.list_bookings(session)
    return booking_response(result)


@router.post("/{code}/cancel")
async def cancel_booking(
    code: str,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_booking_orchestrator),
):
    result = await orchestrator.cancel(session, code)
    return booking_response(result)
