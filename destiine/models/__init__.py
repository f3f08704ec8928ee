from destiine.models.user import User
from destiine.models.inventory import InventoryUnit, UnitKind
from destiine.models.reservation import (
    Reservation,
    ReservationUnit,
    ReservationState,
    PaymentStatus,
    BookingStatus,
    PaymentMethod,
    BookingKind,
)
from destiine.models.offer import FlightOfferRecord, HotelOfferRecord

__all__ = [
    "User",
    "InventoryUnit",
    "UnitKind",
    "Reservation",
    "ReservationUnit",
    "ReservationState",
    "PaymentStatus",
    "BookingStatus",
    "PaymentMethod",
    "BookingKind",
    "FlightOfferRecord",
    "HotelOfferRecord",
]
