"""
Booking orchestrators

Per-domain (flight / hotel) booking flow on top of the hold store:

1. reserve: validate input, look up the offer, price it, atomic claim
   -> HELD (nothing is written on any failure)
2. get_reserved: re-read the user's hold and re-validate it: departed or
   past its guarantee -> EXPIRED, unit taken by someone else -> CONFLICTED
   (the requesting hold is the one canceled)
3. create_payment_intent: get_reserved, then one intent per reservation
   (idempotency key = reservation code) -> PAYING
4. handle_payment_event: processor confirmation -> CONFIRMED, or payment
   failed -> hold released

Every public operation returns a BookingResult and never raises. Domain
errors map to their result; anything unexpected is logged and reported as
a generic UpstreamError.
"""
import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from destiine.core.exceptions import (
    ConflictDetectedError,
    DestiineError,
    ExpiredHoldError,
    NotReservedError,
    OfferNotFoundError,
    UnauthenticatedError,
    UnavailableError,
    UpstreamError,
    ValidationError,
)
from destiine.core.utils import as_utc, utcnow
from destiine.models import (
    BookingKind,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    ReservationState,
)
from destiine.models.reservation import HOLD_TTL_MINUTES
from destiine.schemas.booking import (
    FlightReservedQuery,
    FlightReserveRequest,
    GuestForm,
    HotelReservedQuery,
    HotelReserveRequest,
    PassengerForm,
)
from destiine.schemas.user import SessionInfo
from destiine.services.accounts import AccountRepository
from destiine.services.catalog import OfferRepository, segment_id_for
from destiine.services.contention import ContentionChecker
from destiine.services.email_provider import EmailMessage, MailConfig
from destiine.services.fares import dollars_to_cents, quote_flight, quote_hotel
from destiine.services.hold_store import SYSTEM_ACTOR, HoldStore
from destiine.services.payments import (
    STRIPE_MINIMUM_CENTS,
    PaymentEvent,
    PaymentIntentParams,
    PaymentsConfig,
    PaymentsDisabled,
)

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Something went wrong, please try again later"
USER_ACTOR = "user"

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


class BookingResult:
    """Outcome of an orchestrator operation: {success, message, data?, errors?}."""

    def __init__(
        self,
        success: bool,
        message: str,
        data: Optional[Any] = None,
        errors: Optional[Dict[str, Any]] = None,
        code: Optional[str] = None,
        status_code: int = 200,
    ):
        self.success = success
        self.message = message
        self.data = data
        self.errors = errors
        self.code = code
        self.status_code = status_code

    @classmethod
    def ok(cls, message: str, data: Optional[Any] = None, status_code: int = 200) -> "BookingResult":
        return cls(success=True, message=message, data=data, status_code=status_code)

    @classmethod
    def from_error(cls, exc: DestiineError) -> "BookingResult":
        errors = getattr(exc, "errors", None) or None
        details = {k: v for k, v in exc.details.items() if k != "errors" and v is not None}
        return cls(
            success=False,
            message=exc.message,
            data=details or None,
            errors=errors,
            code=exc.code,
            status_code=exc.status_code,
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            body["data"] = self.data
        if self.errors:
            body["errors"] = self.errors
        if self.code:
            body["code"] = self.code
        return body

    def __repr__(self) -> str:
        return f"BookingResult(success={self.success}, status_code={self.status_code}, message={self.message!r})"


def validate_entries(
    entries: List[Dict[str, Any]],
    form: Type[BaseModel],
    prefix: str,
) -> Tuple[List[BaseModel], Dict[str, str]]:
    """Validate each entry on its own, collecting field errors keyed "prefix.index.field"."""
    forms = []
    errors: Dict[str, str] = {}
    for index, entry in enumerate(entries):
        try:
            forms.append(form.model_validate(entry))
        except PydanticValidationError as e:
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "__root__"
                errors[f"{prefix}.{index}.{field}"] = error["msg"]
    return forms, errors


def stay_window(check_in: date, check_out: date) -> Tuple[datetime, datetime]:
    """[check-in midnight, check-out midnight) in UTC; back-to-back stays do not overlap."""
    return (
        datetime(check_in.year, check_in.month, check_in.day, tzinfo=timezone.utc),
        datetime(check_out.year, check_out.month, check_out.day, tzinfo=timezone.utc),
    )


class BookingOrchestrator:
    """
    Shared booking flow. Used directly (kind=None) for the operations that
    span both domains: listing and canceling a user's bookings.
    """

    kind: Optional[str] = None
    conflict_reason = "Already taken by another guest"
    unavailable_message = "Some of the selected units are no longer available"

    def __init__(
        self,
        store: HoldStore,
        checker: ContentionChecker,
        catalog: OfferRepository,
        payments: PaymentsConfig,
        mailer: MailConfig,
        accounts: AccountRepository,
        hold_ttl_minutes: int = HOLD_TTL_MINUTES,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.checker = checker
        self.catalog = catalog
        self.payments = payments
        self.mailer = mailer
        self.accounts = accounts
        self.hold_ttl_minutes = hold_ttl_minutes
        self.clock = clock

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def reserve(self, session: Optional[SessionInfo], request) -> BookingResult:
        return await self._guarded("reserve", self._reserve, session, request)

    async def get_reserved(self, session: Optional[SessionInfo], query) -> BookingResult:
        return await self._guarded("get_reserved", self._get_reserved, session, query)

    async def create_payment_intent(self, session: Optional[SessionInfo], query) -> BookingResult:
        return await self._guarded("payment_intent", self._create_payment_intent, session, query)

    async def cancel(self, session: Optional[SessionInfo], code: str) -> BookingResult:
        return await self._guarded("cancel", self._cancel, session, code)

    async def list_bookings(self, session: Optional[SessionInfo]) -> BookingResult:
        return await self._guarded("list", self._list_bookings, session)

    async def handle_payment_event(self, event: PaymentEvent) -> BookingResult:
        return await self._guarded("payment_event", self._handle_payment_event, event)

    # ------------------------------------------------------------------
    # Hooks for the per-domain variants
    # ------------------------------------------------------------------

    async def _draft(self, session: SessionInfo, request, now: datetime) -> Reservation:
        raise NotImplementedError

    def _reserved_lookup(self, query) -> Dict[str, Any]:
        raise NotImplementedError

    async def _check_reserved(self, reservation: Reservation, now: datetime) -> None:
        """Domain-specific checks on a hold before it is trusted."""

    def _hold_email(self, session: SessionInfo, reservation: Reservation) -> EmailMessage:
        return EmailMessage(
            to_email=session.email,
            to_name=session.name or None,
            subject=f"Your reservation {reservation.code} is on hold",
            text=(
                f"Reservation {reservation.code} is held until "
                f"{as_utc(reservation.guaranteed_until):%Y-%m-%d %H:%M} UTC.\n"
                f"Total: {reservation.total_price} {reservation.currency}\n"
                "Complete payment before then to confirm it."
            ),
            custom_id=f"hold-{reservation.code}",
        )

    def _confirmation_email(self, reservation: Reservation, email: str) -> EmailMessage:
        return EmailMessage(
            to_email=email,
            subject=f"Booking {reservation.code} confirmed",
            text=(
                f"Payment received for booking {reservation.code}.\n"
                f"Total paid: {reservation.total_price} {reservation.currency}"
            ),
            custom_id=f"confirm-{reservation.code}",
        )

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    async def _guarded(self, operation: str, handler, *args) -> BookingResult:
        try:
            return await handler(*args)
        except DestiineError as e:
            logger.info(f"Booking {operation} rejected ({self.kind or 'any'}): {e.code} - {e.message}")
            return BookingResult.from_error(e)
        except Exception:
            logger.exception(f"Unexpected error during booking {operation} ({self.kind or 'any'})")
            return BookingResult.from_error(UpstreamError(GENERIC_FAILURE))

    @staticmethod
    def _require_session(session: Optional[SessionInfo]) -> SessionInfo:
        if session is None:
            raise UnauthenticatedError("Please login first")
        return session

    async def _notify(self, message: Optional[EmailMessage]) -> None:
        """Best effort: a failed email never fails the booking."""
        if message is None or not message.to_email:
            return
        try:
            result = await self.mailer.send(message)
        except Exception as e:
            logger.error(f"Booking email '{message.subject}' to {message.to_email} failed: {e}")
            return
        if not result.success and result.error != "disabled":
            logger.warning(f"Booking email '{message.subject}' not sent: {result.error}")

    def _summary(self, reservation: Reservation, now: Optional[datetime] = None) -> Dict[str, Any]:
        data = reservation.to_dict()
        if now is not None:
            data["holds_units"] = reservation.holds_units(now)
            data["expired"] = reservation.is_expired(now)
        return data

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    async def _reserve(self, session, request) -> BookingResult:
        session = self._require_session(session)
        start_time = time.time()
        now = self.clock()

        draft = await self._draft(session, request, now)
        outcome = await self.store.claim(draft, now)
        duration_ms = (time.time() - start_time) * 1000

        if outcome.expired_codes:
            logger.info(f"Expired stale holds {', '.join(outcome.expired_codes)} during claim")

        if not outcome.success:
            logger.info(
                f"BOOKING_METRIC: hold_rejected "
                f"kind={self.kind} "
                f"user_id={session.user_id} "
                f"units={','.join(outcome.conflicting_unit_ids)} "
                f"duration_ms={duration_ms:.2f}"
            )
            raise UnavailableError(self.unavailable_message, unit_ids=outcome.conflicting_unit_ids)

        reservation = outcome.reservation
        logger.info(
            f"BOOKING_METRIC: {'hold_extended' if outcome.extended else 'hold_created'} "
            f"kind={self.kind} "
            f"user_id={session.user_id} "
            f"code={reservation.code} "
            f"units={','.join(reservation.unit_ids)} "
            f"total={reservation.total_price} "
            f"superseded={len(outcome.superseded_codes)} "
            f"duration_ms={duration_ms:.2f}"
        )

        if outcome.extended:
            return BookingResult.ok("Reservation extended", data=self._summary(reservation, now))

        await self._notify(self._hold_email(session, reservation))
        return BookingResult.ok("Reservation created successfully", data=self._summary(reservation, now), status_code=201)

    async def _load_reserved(self, session: SessionInfo, query, now: datetime) -> Reservation:
        reservation = await self.store.find_reserved(session.user_id, self.kind, **self._reserved_lookup(query))
        if reservation is None:
            raise NotReservedError(f"No reserved {self.kind} booking found")

        await self._check_reserved(reservation, now)

        if reservation.is_expired(now):
            if not await self.store.expire(reservation.code, now):
                await self._raise_if_paid(reservation.code)
            logger.info(f"BOOKING_METRIC: hold_expired kind={self.kind} code={reservation.code}")
            raise ExpiredHoldError(
                "Your reservation has expired, please book again",
                reservation_code=reservation.code,
            )

        conflicts = await self.checker.conflicting_units(reservation, now)
        if conflicts:
            if not await self.store.cancel_pending(
                reservation.code, self.conflict_reason, SYSTEM_ACTOR, ReservationState.CONFLICTED.value, now
            ):
                await self._raise_if_paid(reservation.code)
            logger.warning(
                f"BOOKING_METRIC: hold_conflicted kind={self.kind} "
                f"code={reservation.code} units={','.join(conflicts)}"
            )
            raise ConflictDetectedError(
                f"{self.conflict_reason}, thus booking is cancelled",
                reservation_code=reservation.code,
                unit_ids=conflicts,
            )
        return reservation

    async def _raise_if_paid(self, code: str) -> None:
        """A release lost to a payment recorded after the read."""
        current = await self.store.get_by_code(code)
        if current is not None and current.payment_status == PaymentStatus.PAID.value:
            logger.info(f"Hold {code} was paid while being released, keeping it")
            raise NotReservedError(f"No reserved {self.kind} booking found")

    async def _get_reserved(self, session, query) -> BookingResult:
        session = self._require_session(session)
        now = self.clock()
        reservation = await self._load_reserved(session, query, now)
        return BookingResult.ok(f"Reserved {self.kind} booking found", data=self._summary(reservation, now))

    async def _create_payment_intent(self, session, query) -> BookingResult:
        session = self._require_session(session)
        start_time = time.time()
        now = self.clock()

        reservation = await self._load_reserved(session, query, now)

        if reservation.payment_method == PaymentMethod.CASH.value:
            raise ValidationError(
                "Cash bookings are paid at the property",
                errors={"payment_method": "Card payment is not required for this booking"},
            )
        if isinstance(self.payments, PaymentsDisabled):
            logger.warning(f"Payment intent requested for {reservation.code} but payments are disabled: {self.payments.reason}")
            raise UpstreamError("Payments are currently unavailable")

        amount_cents = dollars_to_cents(reservation.total_price)
        if amount_cents < STRIPE_MINIMUM_CENTS:
            raise ValidationError("Booking total must be at least $0.50", errors={"total_price": "Below minimum"})

        gateway = self.payments.gateway
        customer_id = await self.accounts.get_customer_id(session.user_id)
        if not customer_id:
            customer_id = await gateway.create_customer(session.name or session.email, session.email)
            await self.accounts.set_customer_id(session.user_id, customer_id)

        intent = await gateway.create_payment_intent(PaymentIntentParams(
            amount_cents=amount_cents,
            currency=reservation.currency.lower(),
            customer_id=customer_id,
            idempotency_key=reservation.code,
            metadata={
                "kind": reservation.kind,
                "reservation_code": reservation.code,
                "user_id": str(session.user_id),
                "email": session.email,
                "is_demo": "true" if reservation.is_demo else "false",
            },
        ))
        await self.store.mark_paying(reservation.code, intent.intent_id)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"BOOKING_METRIC: payment_intent_created "
            f"kind={self.kind} "
            f"user_id={session.user_id} "
            f"code={reservation.code} "
            f"intent_id={intent.intent_id} "
            f"amount_cents={amount_cents} "
            f"duration_ms={duration_ms:.2f}"
        )
        return BookingResult.ok("Payment intent created", data={
            "reservation_code": reservation.code,
            "payment_intent_id": intent.intent_id,
            "client_secret": intent.client_secret,
            "status": intent.status,
            "amount_cents": amount_cents,
            "currency": reservation.currency.lower(),
            "publishable_key": self.payments.publishable_key,
        })

    async def _cancel(self, session, code: str) -> BookingResult:
        session = self._require_session(session)
        now = self.clock()

        reservation = await self.store.get_by_code(code)
        if (
            reservation is None
            or reservation.user_id != session.user_id
            or (self.kind is not None and reservation.kind != self.kind)
        ):
            raise NotReservedError("Booking not found")
        paid_error = ValidationError(
            "Paid bookings cannot be canceled online, please contact support",
            errors={"code": "Booking is already paid"},
        )
        if reservation.payment_status == PaymentStatus.PAID.value:
            raise paid_error

        changed = await self.store.cancel_pending(code, "Canceled by user", USER_ACTOR, ReservationState.CANCELED.value, now)
        reservation = await self.store.get_by_code(code)
        if not changed and reservation.payment_status == PaymentStatus.PAID.value:
            raise paid_error
        if changed:
            logger.info(f"BOOKING_METRIC: hold_canceled kind={reservation.kind} code={code} actor={USER_ACTOR}")
        message = "Booking canceled" if changed else "Booking was already canceled"
        return BookingResult.ok(message, data=self._summary(reservation, now))

    async def _list_bookings(self, session) -> BookingResult:
        session = self._require_session(session)
        now = self.clock()
        records = await self.store.list_for_user(session.user_id)
        if self.kind is not None:
            records = [r for r in records if r.kind == self.kind]
        return BookingResult.ok("Bookings fetched successfully", data=[self._summary(r, now) for r in records])

    async def _handle_payment_event(self, event: PaymentEvent) -> BookingResult:
        now = self.clock()
        reservation = None
        if event.reservation_code:
            reservation = await self.store.get_by_code(event.reservation_code)
        if reservation is None and event.intent_id:
            reservation = await self.store.get_by_intent(event.intent_id)
        if reservation is None:
            logger.warning(f"Payment event {event.event_id} ({event.type}) matches no reservation")
            raise NotReservedError("No reservation for this payment")

        code = reservation.code

        if event.type == EVENT_PAYMENT_SUCCEEDED:
            expected_cents = dollars_to_cents(reservation.total_price)
            if event.amount_cents != expected_cents or event.currency.lower() != reservation.currency.lower():
                logger.error(
                    "Payment mismatch code=%s expected=%s %s received=%s %s",
                    code, expected_cents, reservation.currency.lower(), event.amount_cents, event.currency.lower(),
                )
                raise ValidationError("Payment amount mismatch", errors={"amount": "Does not match booking total"})

            if await self.store.mark_paid(code, now):
                logger.info(f"BOOKING_METRIC: booking_confirmed kind={reservation.kind} code={code} intent_id={event.intent_id}")
                email = event.metadata.get("email")
                if email:
                    await self._notify(self._confirmation_email(reservation, email))
                return BookingResult.ok("Booking confirmed", data={"reservation_code": code})

            current = await self.store.get_by_code(code)
            if current is not None and current.payment_status == PaymentStatus.PAID.value:
                return BookingResult.ok("Booking already confirmed", data={"reservation_code": code})
            logger.error(f"Payment {event.intent_id} succeeded for canceled reservation {code}; refund required")
            raise NotReservedError("Reservation is no longer active", details={"reservation_code": code})

        if event.type == EVENT_PAYMENT_FAILED:
            changed = await self.store.mark_payment_failed(code, now)
            if changed:
                logger.info(f"BOOKING_METRIC: payment_failed kind={reservation.kind} code={code} intent_id={event.intent_id}")
            message = "Payment failure recorded" if changed else "Payment failure already recorded"
            return BookingResult.ok(message, data={"reservation_code": code})

        logger.info(f"Unhandled payment event type: {event.type}")
        return BookingResult.ok(f"Ignored event {event.type}")


class FlightBookingOrchestrator(BookingOrchestrator):
    kind = BookingKind.FLIGHT.value
    conflict_reason = "Seat is already taken by another passenger"
    unavailable_message = "Some of the selected seats are no longer available"

    async def _draft(self, session: SessionInfo, request: FlightReserveRequest, now: datetime) -> Reservation:
        passengers, errors = validate_entries(request.passengers, PassengerForm, "passengers")
        if not request.passengers:
            errors["passengers"] = "At least one passenger is required"
        seats = [p.seat for p in passengers]
        if len(set(seats)) != len(seats):
            errors["passengers"] = "Each passenger needs a different seat"
        if errors:
            raise ValidationError("Please correct the passenger details", errors=errors)

        offer = await self.catalog.get_flight(request.flight_code, request.departure_date)
        if offer is None:
            raise OfferNotFoundError("Flight not found")
        if offer.departure_at <= now:
            raise ValidationError("This flight has already departed", errors={"departure_date": "Flight has departed"})

        unknown = {
            f"passengers.{i}.seat": "Seat does not belong to this flight"
            for i, seat in enumerate(seats)
            if offer.seat_class_of(seat) is None
        }
        if unknown:
            raise ValidationError("Selected seats do not belong to this flight", errors=unknown)

        passenger_data = [p.model_dump(mode="json") for p in passengers]
        quote = quote_flight(offer, passenger_data)
        return Reservation.create(
            kind=self.kind,
            user_id=session.user_id,
            offer_ref=offer.segment_id,
            window_start=offer.departure_at,
            window_end=offer.arrival_at,
            unit_ids=seats,
            passengers=passenger_data,
            fare_breakdown=quote.breakdown(),
            total_price=quote.total,
            currency=quote.currency,
            now=now,
            ttl_minutes=self.hold_ttl_minutes,
            is_demo=offer.is_demo,
        )

    def _reserved_lookup(self, query: FlightReservedQuery) -> Dict[str, Any]:
        return {"offer_ref": segment_id_for(query.flight_code, query.departure_date)}

    async def _check_reserved(self, reservation: Reservation, now: datetime) -> None:
        if as_utc(reservation.window_start) <= as_utc(now):
            if not await self.store.cancel_pending(
                reservation.code, "Flight expired", SYSTEM_ACTOR, ReservationState.EXPIRED.value, now
            ):
                await self._raise_if_paid(reservation.code)
            raise ExpiredHoldError("This flight has already departed", reservation_code=reservation.code)

    async def seat_availability(self, session: Optional[SessionInfo], flight_code: str, departure_date: date) -> BookingResult:
        return await self._guarded("seat_availability", self._seat_availability, session, flight_code, departure_date)

    async def _seat_availability(self, session, flight_code, departure_date) -> BookingResult:
        offer = await self.catalog.get_flight(flight_code, departure_date)
        if offer is None:
            raise OfferNotFoundError("Flight not found")
        user_id = session.user_id if session else None
        seats = {}
        for seat_class, numbers in offer.seats.items():
            seats[seat_class] = [
                {
                    "unit_id": offer.seat_unit_id(number),
                    "number": number,
                    "available": await self.checker.is_unit_free(
                        offer.seat_unit_id(number), offer.departure_at, offer.arrival_at, user_id
                    ),
                }
                for number in numbers
            ]
        return BookingResult.ok("Seat availability fetched", data={"flight": offer.to_dict(), "seats": seats})


class HotelBookingOrchestrator(BookingOrchestrator):
    kind = BookingKind.HOTEL.value
    conflict_reason = "Room is already taken by another person"
    unavailable_message = "Some of the selected rooms are no longer available"

    async def _draft(self, session: SessionInfo, request: HotelReserveRequest, now: datetime) -> Reservation:
        guests, errors = validate_entries(request.guests, GuestForm, "guests")
        if not request.guests:
            errors["guests"] = "At least one guest is required"
        if not request.rooms:
            errors["rooms"] = "Select at least one room"
        elif len(set(request.rooms)) != len(request.rooms):
            errors["rooms"] = "Each room can only be selected once"
        if request.check_out <= request.check_in:
            errors["check_out"] = "Check-out must be after check-in"
        if request.check_in < as_utc(now).date():
            errors["check_in"] = "Check-in cannot be in the past"
        if errors:
            raise ValidationError("Please correct the booking details", errors=errors)

        offer = await self.catalog.get_hotel(request.slug)
        if offer is None:
            raise OfferNotFoundError("Hotel not found")

        unknown = [unit_id for unit_id in request.rooms if offer.room_type_of(unit_id) is None]
        if unknown:
            raise ValidationError(
                "Selected rooms do not belong to this hotel",
                errors={"rooms": f"Unknown rooms: {', '.join(unknown)}"},
            )
        capacity = sum(offer.rooms[offer.room_type_of(unit_id)].max_guests for unit_id in request.rooms)
        if len(guests) > capacity:
            raise ValidationError(
                "Too many guests for the selected rooms",
                errors={"guests": f"Selected rooms sleep at most {capacity}"},
            )

        nights = (request.check_out - request.check_in).days
        quote = quote_hotel(offer, request.rooms, nights)
        window_start, window_end = stay_window(request.check_in, request.check_out)

        reservation = Reservation.create(
            kind=self.kind,
            user_id=session.user_id,
            offer_ref=offer.slug,
            window_start=window_start,
            window_end=window_end,
            unit_ids=request.rooms,
            passengers=[g.model_dump(mode="json") for g in guests],
            fare_breakdown=quote.breakdown(),
            total_price=quote.total,
            currency=quote.currency,
            now=now,
            ttl_minutes=self.hold_ttl_minutes,
            payment_method=request.payment_method,
            is_demo=offer.is_demo,
        )
        if request.payment_method == PaymentMethod.CASH.value:
            # Pay at the property: confirmed now, held through the stay
            reservation.booking_status = BookingStatus.CONFIRMED.value
            reservation.guaranteed_until = window_end
        return reservation

    def _reserved_lookup(self, query: HotelReservedQuery) -> Dict[str, Any]:
        window_start, window_end = stay_window(query.check_in, query.check_out)
        return {"offer_ref": query.slug, "window_start": window_start, "window_end": window_end}

    async def room_availability(
        self, session: Optional[SessionInfo], slug: str, check_in: date, check_out: date
    ) -> BookingResult:
        return await self._guarded("room_availability", self._room_availability, session, slug, check_in, check_out)

    async def _room_availability(self, session, slug, check_in, check_out) -> BookingResult:
        if check_out <= check_in:
            raise ValidationError("Check-out must be after check-in", errors={"check_out": "Must be after check-in"})
        offer = await self.catalog.get_hotel(slug)
        if offer is None:
            raise OfferNotFoundError("Hotel not found")
        window_start, window_end = stay_window(check_in, check_out)
        user_id = session.user_id if session else None
        rooms = {}
        for room_type, rate in offer.rooms.items():
            free = [
                offer.room_unit_id(number) for number in rate.numbers
                if await self.checker.is_unit_free(offer.room_unit_id(number), window_start, window_end, user_id)
            ]
            rooms[room_type] = {
                "nightly_rate": str(rate.nightly_rate),
                "max_guests": rate.max_guests,
                "available_units": free,
                "available_count": len(free),
            }
        return BookingResult.ok("Room availability fetched", data={"hotel": offer.to_dict(), "rooms": rooms})
