"""
Reservation model

A time-boxed hold on one or more inventory units (flight seats or hotel
rooms). Replaces deleting holds with status transitions: records are kept
for audit and only ever canceled.

Lifecycle:
1. Created HELD by the booking orchestrator after an atomic claim
2. PAYING once a payment intent exists for it
3. CONFIRMED when the payment processor reports success
4. EXPIRED / CONFLICTED / CANCELED are terminal and release the units
"""
import enum
import secrets
import string
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
)
from sqlalchemy.orm import relationship

from destiine.core.database import Base
from destiine.core.utils import as_utc

# Default hold TTL in minutes
HOLD_TTL_MINUTES = 10

CODE_ALPHABET = string.ascii_uppercase + string.digits


class BookingKind(str, enum.Enum):
    FLIGHT = "flight"
    HOTEL = "hotel"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class BookingStatus(str, enum.Enum):
    """bookingStatus for hotels, ticketStatus for flights"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    CASH = "cash"


class ReservationState(str, enum.Enum):
    HELD = "held"
    PAYING = "paying"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CONFLICTED = "conflicted"
    CANCELED = "canceled"


def generate_reservation_code(kind: str) -> str:
    """PNR-style code for flights (6 chars), HB-prefixed code for hotels."""
    if kind == BookingKind.FLIGHT.value:
        return "".join(secrets.choice(CODE_ALPHABET) for _ in range(6))
    return "HB-" + "".join(secrets.choice(CODE_ALPHABET) for _ in range(10))


class Reservation(Base):
    """
    Temporary hold tied to a user and a set of inventory units.

    guaranteed_until is authoritative only while payment is pending: a
    pending record past it never holds its units, whether or not anything
    has canceled it yet.
    """
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    kind = Column(String(16), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Flight code or hotel slug, plus the booked window
    offer_ref = Column(String(128), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    window_end = Column(DateTime(timezone=True), nullable=False)

    unit_ids = Column(JSON, nullable=False, default=list)
    passengers = Column(JSON, nullable=False, default=list)

    # Fare data is computed once at creation and never recomputed
    fare_breakdown = Column(JSON, nullable=False, default=list)
    total_price = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    payment_status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value)
    booking_status = Column(String(16), nullable=False, default=BookingStatus.PENDING.value)
    payment_method = Column(String(16), nullable=False, default=PaymentMethod.CARD.value)
    state = Column(String(16), nullable=False, default=ReservationState.HELD.value, index=True)
    payment_intent_id = Column(String(255), nullable=True, index=True)

    is_demo = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    guaranteed_until = Column(DateTime(timezone=True), nullable=False, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    canceled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)
    canceled_by = Column(String(32), nullable=True)

    user = relationship("User", back_populates="reservations")
    units = relationship("ReservationUnit", back_populates="reservation", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_reservations_user_lookup", "user_id", "kind", "offer_ref", "booking_status"),
    )

    def __repr__(self):
        return f"<Reservation(code={self.code!r}, kind={self.kind!r}, state={self.state!r})>"

    @classmethod
    def create(
        cls,
        kind: str,
        user_id: int,
        offer_ref: str,
        window_start: datetime,
        window_end: datetime,
        unit_ids: List[str],
        passengers: List[Dict[str, Any]],
        fare_breakdown: List[Dict[str, Any]],
        total_price: Decimal,
        currency: str,
        now: datetime,
        ttl_minutes: int = HOLD_TTL_MINUTES,
        payment_method: str = PaymentMethod.CARD.value,
        is_demo: bool = False,
    ) -> "Reservation":
        """Build a HELD reservation with every column set explicitly."""
        return cls(
            code=generate_reservation_code(kind),
            kind=kind,
            user_id=user_id,
            offer_ref=offer_ref,
            window_start=window_start,
            window_end=window_end,
            unit_ids=list(unit_ids),
            passengers=list(passengers),
            fare_breakdown=list(fare_breakdown),
            total_price=total_price,
            currency=currency.upper(),
            payment_status=PaymentStatus.PENDING.value,
            booking_status=BookingStatus.PENDING.value,
            payment_method=payment_method,
            state=ReservationState.HELD.value,
            is_demo=is_demo,
            created_at=now,
            guaranteed_until=cls.create_expiry(now, ttl_minutes),
        )

    @staticmethod
    def create_expiry(now: datetime, ttl_minutes: int = HOLD_TTL_MINUTES) -> datetime:
        """Calculate the guarantee deadline from now."""
        return now + timedelta(minutes=ttl_minutes)

    @property
    def is_canceled(self) -> bool:
        return self.booking_status == BookingStatus.CANCELED.value

    @property
    def is_reserved(self) -> bool:
        """Pending booking awaiting payment, or confirmed with a pending cash payment."""
        if self.payment_status != PaymentStatus.PENDING.value:
            return False
        if self.booking_status == BookingStatus.PENDING.value:
            return True
        return (
            self.booking_status == BookingStatus.CONFIRMED.value
            and self.payment_method == PaymentMethod.CASH.value
        )

    def is_expired(self, now: datetime) -> bool:
        """Pending payment and past the guarantee window."""
        return self.is_reserved and as_utc(self.guaranteed_until) <= as_utc(now)

    def holds_units(self, now: datetime) -> bool:
        """Whether this record blocks other claimants at `now`."""
        if self.is_canceled:
            return False
        if self.payment_status == PaymentStatus.PAID.value:
            return True
        if self.payment_status == PaymentStatus.FAILED.value:
            return False
        return as_utc(self.guaranteed_until) > as_utc(now)

    def cancel(self, reason: str, actor: str, state: str, now: datetime) -> bool:
        """
        Cancel the record. Returns False when it was already canceled, in
        which case nothing (canceled_at included) is touched.
        """
        if self.is_canceled:
            return False
        self.booking_status = BookingStatus.CANCELED.value
        self.state = state
        self.cancel_reason = reason
        self.canceled_by = actor
        self.canceled_at = now
        return True

    def mark_paying(self, payment_intent_id: str) -> None:
        self.payment_intent_id = payment_intent_id
        if self.state == ReservationState.HELD.value:
            self.state = ReservationState.PAYING.value

    def mark_paid(self, now: datetime) -> bool:
        if self.payment_status == PaymentStatus.PAID.value:
            return False
        self.payment_status = PaymentStatus.PAID.value
        self.booking_status = BookingStatus.CONFIRMED.value
        self.state = ReservationState.CONFIRMED.value
        self.paid_at = now
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind,
            "offer_ref": self.offer_ref,
            "window_start": as_utc(self.window_start).isoformat(),
            "window_end": as_utc(self.window_end).isoformat(),
            "unit_ids": list(self.unit_ids or []),
            "passengers": list(self.passengers or []),
            "fare_breakdown": list(self.fare_breakdown or []),
            "total_price": str(self.total_price),
            "currency": self.currency,
            "payment_status": self.payment_status,
            "booking_status": self.booking_status,
            "payment_method": self.payment_method,
            "state": self.state,
            "is_demo": bool(self.is_demo),
            "guaranteed_until": as_utc(self.guaranteed_until).isoformat(),
            "canceled_at": as_utc(self.canceled_at).isoformat() if self.canceled_at else None,
            "cancel_reason": self.cancel_reason,
        }


class ReservationUnit(Base):
    """
    One row per (reservation, unit). Carries the window so overlap queries
    do not need to read the reservation's JSON columns.
    """
    __tablename__ = "reservation_units"

    id = Column(Integer, primary_key=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(String(64), ForeignKey("inventory_units.id"), nullable=False)
    window_start = Column(DateTime(timezone=True), nullable=False)
    window_end = Column(DateTime(timezone=True), nullable=False)

    reservation = relationship("Reservation", back_populates="units")
    unit = relationship("InventoryUnit")

    __table_args__ = (
        Index("ix_reservation_units_unit_window", "unit_id", "window_start", "window_end"),
    )
