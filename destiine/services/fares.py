"""
Fare computation

Decimal currency everywhere; integer cents only at the payment boundary.
A quote is computed once when the hold is created and stored on the
reservation as its fare breakdown.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from destiine.core.exceptions import ValidationError
from destiine.services.catalog import FlightOffer, HotelOffer

CENT = Decimal("0.01")


def quantize(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def dollars_to_cents(amount) -> int:
    """Convert a dollar amount to integer cents, rounding half up."""
    if amount is None:
        return 0
    quantized = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    return int(quantized * 100)


def cents_to_dollars(amount_cents: int) -> Decimal:
    """Convert integer cents to dollars."""
    return Decimal(amount_cents) / Decimal(100)


@dataclass
class FareLine:
    """One priced unit: a passenger's seat, or a room for the stay."""
    unit_id: str
    category: str
    total: Decimal
    components: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"unit_id": self.unit_id, "category": self.category, "total": str(self.total)}
        for key, value in self.components.items():
            data[key] = str(value) if isinstance(value, Decimal) else value
        return data


@dataclass
class FareQuote:
    currency: str
    lines: List[FareLine]

    @property
    def total(self) -> Decimal:
        return quantize(sum((line.total for line in self.lines), Decimal("0")))

    def breakdown(self) -> List[Dict[str, Any]]:
        return [line.to_dict() for line in self.lines]


def quote_flight(offer: FlightOffer, passengers: List[Dict[str, Any]]) -> FareQuote:
    """
    Per passenger: base fare for the seat's class and the passenger type,
    plus taxes and service fee, minus discount (never below zero).

    Each passenger dict carries "type" (adult/child/infant) and "seat"
    (the seat's unit id).
    """
    lines = []
    for index, passenger in enumerate(passengers):
        unit_id = passenger.get("seat")
        passenger_type = passenger.get("type", "adult")
        seat_class = offer.seat_class_of(unit_id) if unit_id else None
        if seat_class is None:
            raise ValidationError(
                "Selected seat does not belong to this flight",
                errors={f"passengers.{index}.seat": "Unknown seat"},
            )
        fare = offer.fare_for(seat_class, passenger_type)
        if fare is None:
            raise ValidationError(
                f"No {seat_class} fare for passenger type '{passenger_type}'",
                errors={f"passengers.{index}.type": "No fare available"},
            )
        total = quantize(max(fare.base + fare.taxes + fare.service_fee - fare.discount, Decimal("0")))
        lines.append(FareLine(
            unit_id=unit_id,
            category=seat_class,
            total=total,
            components={
                "passenger_index": index,
                "passenger_type": passenger_type,
                "base": quantize(fare.base),
                "taxes": quantize(fare.taxes),
                "service_fee": quantize(fare.service_fee),
                "discount": quantize(fare.discount),
            },
        ))
    return FareQuote(currency=offer.currency, lines=lines)


def quote_hotel(offer: HotelOffer, unit_ids: List[str], nights: int) -> FareQuote:
    """Per room: (nightly rate + nightly taxes) x nights, plus the per-stay fees."""
    if nights < 1:
        raise ValidationError("Stay must be at least one night", errors={"check_out": "Must be after check-in"})
    lines = []
    for unit_id in unit_ids:
        room_type = offer.room_type_of(unit_id)
        rate = offer.rooms.get(room_type) if room_type else None
        if rate is None:
            raise ValidationError(
                "Selected room does not belong to this hotel",
                errors={"rooms": f"Unknown room {unit_id}"},
            )
        total = quantize((rate.nightly_rate + rate.taxes) * nights + rate.fees)
        lines.append(FareLine(
            unit_id=unit_id,
            category=room_type,
            total=total,
            components={
                "nights": nights,
                "nightly_rate": quantize(rate.nightly_rate),
                "taxes": quantize(rate.taxes * nights),
                "fees": quantize(rate.fees),
            },
        ))
    return FareQuote(currency=offer.currency, lines=lines)


def preview_flight_price(offer: FlightOffer, flight_class: str, counts: Dict[str, int]) -> Optional[Decimal]:
    """Search-result price for a party, or None when a passenger type has no fare."""
    total = Decimal("0")
    for passenger_type, count in counts.items():
        if not count:
            continue
        fare = offer.fare_for(flight_class, passenger_type)
        if fare is None:
            return None
        total += max(fare.base + fare.taxes + fare.service_fee - fare.discount, Decimal("0")) * count
    return quantize(total)
