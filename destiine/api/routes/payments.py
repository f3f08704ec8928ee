"""
Payment routes

Intent creation re-validates the hold first (expiry and contention) and
uses the reservation code as the idempotency key. The webhook confirms or
releases holds once the processor reports the outcome.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from destiine.core.config import settings
from destiine.core.error_handler import sanitize_error_message
from destiine.core.rate_limit import booking_rate_key, limiter
from destiine.schemas.booking import FlightReservedQuery, HotelReservedQuery
from destiine.schemas.user import SessionInfo
from destiine.services.payments import InvalidWebhookError, PaymentsEnabled
from destiine.services.registry import BookingServices
from destiine.api.deps import (
    booking_response,
    get_current_session,
    get_flight_orchestrator,
    get_hotel_orchestrator,
    get_services,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/config")
async def payments_config(services: BookingServices = Depends(get_services)):
    """Public payment configuration for the client."""
    payments = services.payments
    if isinstance(payments, PaymentsEnabled):
        data = {"enabled": True, "publishable_key": payments.publishable_key, "currency": payments.currency}
    else:
        data = {"enabled": False, "reason": payments.reason}
    return {"success": True, "message": "Payment configuration", "data": data}


@router.post("/flight-intent")
@limiter.limit(settings.RATE_LIMIT_BOOKING, key_func=booking_rate_key)
async def flight_payment_intent(
    request: Request,
    payload: FlightReservedQuery,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_flight_orchestrator),
):
    result = await orchestrator.create_payment_intent(session, payload)
    return booking_response(result)


@router.post("/hotel-intent")
@limiter.limit(settings.RATE_LIMIT_BOOKING, key_func=booking_rate_key)
async def hotel_payment_intent(
    request: Request,
    payload: HotelReservedQuery,
    session: Optional[SessionInfo] = Depends(get_current_session),
    orchestrator=Depends(get_hotel_orchestrator),
):
    result = await orchestrator.create_payment_intent(session, payload)
    return booking_response(result)


@router.post("/webhook")
async def payment_webhook(request: Request, services: BookingServices = Depends(get_services)):
    """
    Processor webhook. Signature verified before anything is read; once
    verified the event is always acknowledged, business failures are logged.
    """
    if not isinstance(services.payments, PaymentsEnabled):
        logger.error("Payment webhook received but payments are disabled")
        raise HTTPException(status_code=503, detail="Payments not configured")

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("Payment webhook missing signature header")
        raise HTTPException(status_code=400, detail="Missing signature")

    try:
        event = services.payments.gateway.parse_webhook(payload, signature)
    except InvalidWebhookError as e:
        logger.warning(f"Payment webhook rejected: {e}")
        raise HTTPException(status_code=400, detail=sanitize_error_message(e))

    logger.info(f"Payment webhook received: {event.type} (event_id={event.event_id})")
    result = await services.orchestrator_for(event.kind).handle_payment_event(event)
    if not result.success:
        logger.warning(f"Payment webhook {event.event_id} not applied: {result.message}")
    return {"status": "success", "message": result.message}
