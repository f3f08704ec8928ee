"""
Offer catalog

Read-only lookup of flight and hotel offers. One repository interface with
two interchangeable backends picked by CATALOG_BACKEND:
- json: static files under CATALOG_DATA_DIR (flights.json, hotels.json,
  cities.json). Offers from here are demo offers.
- database: flight_offers / hotel_offers tables.

Both normalize to FlightOffer / HotelOffer, which also describe the
inventory units (seats and rooms) the offer exposes.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select

from destiine.core.database import get_db_session
from destiine.core.utils import as_utc
from destiine.models.inventory import InventoryUnit
from destiine.models.offer import FlightOfferRecord, HotelOfferRecord

logger = logging.getLogger(__name__)

PASSENGER_TYPES = ("adult", "child", "infant")
SEAT_CLASSES = ("economy", "premium_economy", "business", "first")
DATE_RANGE_FALLBACK = timedelta(days=365)


def segment_id_for(code: str, departure_date: date) -> str:
    """Identifier of one dated departure of a flight code."""
    return f"{code}-{departure_date:%Y%m%d}"


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


# =============================================================================
# Normalized offers
# =============================================================================

@dataclass
class FareComponents:
    """Per-passenger fare for one seat class and passenger type."""
    base: Decimal
    taxes: Decimal = Decimal("0")
    service_fee: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")


@dataclass
class RoomRate:
    """Price and inventory for one room type."""
    room_type: str
    nightly_rate: Decimal
    taxes: Decimal = Decimal("0")  # per night
    fees: Decimal = Decimal("0")  # per stay
    max_guests: int = 2
    numbers: List[str] = field(default_factory=list)


@dataclass
class FlightOffer:
    code: str
    departure_at: datetime
    arrival_at: datetime
    origin: Dict[str, Any]
    destination: Dict[str, Any]
    airline: Dict[str, Any]
    currency: str
    fares: Dict[str, Dict[str, FareComponents]]
    seats: Dict[str, List[str]]
    status: str = "scheduled"
    expire_at: Optional[datetime] = None
    is_demo: bool = False

    @property
    def segment_id(self) -> str:
        return segment_id_for(self.code, self.departure_at.date())

    @property
    def duration_minutes(self) -> int:
        return int((self.arrival_at - self.departure_at).total_seconds() // 60)

    @property
    def bookable_until(self) -> datetime:
        return self.expire_at or self.departure_at

    def seat_unit_id(self, seat_number: str) -> str:
        return f"{self.segment_id}-{seat_number}"

    def seat_class_of(self, unit_id: str) -> Optional[str]:
        for seat_class, numbers in self.seats.items():
            for number in numbers:
                if self.seat_unit_id(number) == unit_id:
                    return seat_class
        return None

    def fare_for(self, seat_class: str, passenger_type: str) -> Optional[FareComponents]:
        return self.fares.get(seat_class, {}).get(passenger_type)

    def seat_count(self, seat_class: str) -> int:
        return len(self.seats.get(seat_class, []))

    def units(self) -> List[InventoryUnit]:
        return [
            InventoryUnit.seat(
                self.seat_unit_id(number),
                segment_id=self.segment_id,
                seat_class=seat_class,
                seat_number=number,
                flight_code=self.code,
            )
            for seat_class, numbers in self.seats.items()
            for number in numbers
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "segment_id": self.segment_id,
            "departure_at": self.departure_at.isoformat(),
            "arrival_at": self.arrival_at.isoformat(),
            "duration_minutes": self.duration_minutes,
            "origin": self.origin,
            "destination": self.destination,
            "airline": self.airline,
            "currency": self.currency,
            "status": self.status,
            "seats": {
                seat_class: [{"unit_id": self.seat_unit_id(n), "number": n} for n in numbers]
                for seat_class, numbers in self.seats.items()
            },
            "is_demo": self.is_demo,
        }


@dataclass
class HotelOffer:
    slug: str
    name: str
    city: str
    country: str
    currency: str
    rooms: Dict[str, RoomRate]
    address: Optional[str] = None
    rating: Optional[Decimal] = None
    is_demo: bool = False

    def room_unit_id(self, room_number: str) -> str:
        return f"{self.slug}-{room_number}"

    def room_type_of(self, unit_id: str) -> Optional[str]:
        for room_type, rate in self.rooms.items():
            for number in rate.numbers:
                if self.room_unit_id(number) == unit_id:
                    return room_type
        return None

    def units(self) -> List[InventoryUnit]:
        return [
            InventoryUnit.room(
                self.room_unit_id(number),
                hotel_slug=self.slug,
                room_type=room_type,
                room_number=number,
                max_guests=rate.max_guests,
            )
            for room_type, rate in self.rooms.items()
            for number in rate.numbers
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "city": self.city,
            "country": self.country,
            "address": self.address,
            "rating": str(self.rating) if self.rating is not None else None,
            "currency": self.currency,
            "rooms": {
                room_type: {
                    "nightly_rate": str(rate.nightly_rate),
                    "max_guests": rate.max_guests,
                    "units": [{"unit_id": self.room_unit_id(n), "number": n} for n in rate.numbers],
                }
                for room_type, rate in self.rooms.items()
            },
            "is_demo": self.is_demo,
        }


def flight_offer_from_dict(data: Dict[str, Any], is_demo: bool = False) -> FlightOffer:
    fares = {
        seat_class: {
            passenger_type: FareComponents(
                base=to_decimal(components.get("base")),
                taxes=to_decimal(components.get("taxes")),
                service_fee=to_decimal(components.get("service_fee")),
                discount=to_decimal(components.get("discount")),
            )
            for passenger_type, components in by_type.items()
        }
        for seat_class, by_type in (data.get("fares") or {}).items()
    }
    expire_at = data.get("expire_at")
    return FlightOffer(
        code=data["code"],
        departure_at=parse_datetime(data["departure_at"]),
        arrival_at=parse_datetime(data["arrival_at"]),
        origin=dict(data["origin"]),
        destination=dict(data["destination"]),
        airline=dict(data.get("airline") or {}),
        currency=(data.get("currency") or "USD").upper(),
        fares=fares,
        seats={k: [str(n) for n in v] for k, v in (data.get("seats") or {}).items()},
        status=data.get("status") or "scheduled",
        expire_at=parse_datetime(expire_at) if expire_at else None,
        is_demo=is_demo,
    )


def hotel_offer_from_dict(data: Dict[str, Any], is_demo: bool = False) -> HotelOffer:
    rooms = {
        room_type: RoomRate(
            room_type=room_type,
            nightly_rate=to_decimal(room.get("nightly_rate")),
            taxes=to_decimal(room.get("taxes")),
            fees=to_decimal(room.get("fees")),
            max_guests=int(room.get("max_guests") or 2),
            numbers=[str(n) for n in room.get("numbers") or []],
        )
        for room_type, room in (data.get("rooms") or {}).items()
    }
    rating = data.get("rating")
    return HotelOffer(
        slug=data["slug"],
        name=data["name"],
        city=data["city"],
        country=data["country"],
        currency=(data.get("currency") or "USD").upper(),
        rooms=rooms,
        address=data.get("address"),
        rating=to_decimal(rating) if rating is not None else None,
        is_demo=is_demo,
    )


# =============================================================================
# Shared filtering
# =============================================================================

def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle in value.lower()


def filter_cities(cities: List[Dict[str, Any]], query: Optional[str], limit: int) -> List[Dict[str, Any]]:
    """Substring match on code, airport name, city and country."""
    if query and query.strip():
        needle = query.strip().lower()
        cities = [
            c for c in cities
            if _contains(c.get("code"), needle)
            or _contains(c.get("name"), needle)
            or _contains(c.get("city"), needle)
            or _contains(c.get("country"), needle)
        ]
    return [
        {
            "iata_code": c.get("code"),
            "name": f"{c.get('name')}, {c.get('country')}",
            "city": c.get("city"),
            "country": c.get("country"),
            "type": c.get("type", "airport"),
        }
        for c in cities[:limit]
    ]


def places_from_hotels(hotels: List[HotelOffer], query: Optional[str], limit: int) -> List[Dict[str, Any]]:
    """Distinct (city, country) pairs with their hotel counts."""
    counts: Dict[tuple, int] = {}
    for hotel in hotels:
        key = (hotel.city, hotel.country)
        counts[key] = counts.get(key, 0) + 1

    needle = query.strip().lower() if query and query.strip() else None
    places = []
    for (city, country), count in counts.items():
        if needle and not (_contains(city, needle) or _contains(country, needle)):
            continue
        places.append({"city": city, "country": country, "hotel_count": count})
    places.sort(key=lambda p: (p["country"], p["city"]))
    return places[:limit]


def date_range_of(flights: List[FlightOffer], now: datetime) -> Dict[str, datetime]:
    """Earliest and latest departure among flights still bookable at `now`."""
    departures = [f.departure_at for f in flights if f.bookable_until >= now]
    if not departures:
        return {"from": now, "to": now + DATE_RANGE_FALLBACK}
    return {"from": min(departures), "to": max(departures)}


def matches_search(
    offer: FlightOffer,
    origin: str,
    destination: str,
    departure_date: Optional[date],
    seats_needed: int,
    flight_class: str,
) -> bool:
    if offer.origin.get("code", "").upper() != origin.upper():
        return False
    if offer.destination.get("code", "").upper() != destination.upper():
        return False
    if departure_date is not None and offer.departure_at.date() != departure_date:
        return False
    return offer.seat_count(flight_class) >= seats_needed


def day_bounds(day: date):
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


# =============================================================================
# Repositories
# =============================================================================

class OfferRepository(ABC):
    """Read-only offer lookups. Implementations never mutate inventory."""

    @abstractmethod
    async def get_flight(self, code: str, departure_date: date) -> Optional[FlightOffer]:
        ...

    @abstractmethod
    async def get_hotel(self, slug: str) -> Optional[HotelOffer]:
        ...

    @abstractmethod
    async def search_flights(
        self,
        origin: str,
        destination: str,
        departure_date: Optional[date] = None,
        seats_needed: int = 1,
        flight_class: str = "economy",
    ) -> List[FlightOffer]:
        ...

    @abstractmethod
    async def search_cities(self, query: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def search_places(self, query: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def flight_date_range(self, now: datetime) -> Dict[str, datetime]:
        ...

    @abstractmethod
    async def inventory_units(self) -> List[InventoryUnit]:
        ...


class JsonOfferRepository(OfferRepository):
    """Static catalog files, loaded once and kept in memory."""

    def __init__(self, data_dir: str):
        self.data_dir = Path(data_dir)
        self._flights: Optional[List[FlightOffer]] = None
        self._hotels: Optional[List[HotelOffer]] = None
        self._cities: Optional[List[Dict[str, Any]]] = None

    def _read(self, filename: str, key: str) -> List[Dict[str, Any]]:
        path = self.data_dir / filename
        if not path.exists():
            logger.warning(f"Catalog file missing: {path}")
            return []
        with path.open(encoding="utf-8") as fh:
            payload = json.load(fh)
        items = payload.get(key)
        if not isinstance(items, list):
            logger.error(f"Invalid catalog format in {path}: missing '{key}' list")
            return []
        return items

    @property
    def flights(self) -> List[FlightOffer]:
        if self._flights is None:
            self._flights = [flight_offer_from_dict(f, is_demo=True) for f in self._read("flights.json", "flights")]
            logger.info(f"Loaded {len(self._flights)} flights from catalog")
        return self._flights

    @property
    def hotels(self) -> List[HotelOffer]:
        if self._hotels is None:
            self._hotels = [hotel_offer_from_dict(h, is_demo=True) for h in self._read("hotels.json", "hotels")]
            logger.info(f"Loaded {len(self._hotels)} hotels from catalog")
        return self._hotels

    @property
    def cities(self) -> List[Dict[str, Any]]:
        if self._cities is None:
            self._cities = self._read("cities.json", "cities")
        return self._cities

    async def get_flight(self, code: str, departure_date: date) -> Optional[FlightOffer]:
        for offer in self.flights:
            if offer.code == code and offer.departure_at.date() == departure_date:
                return offer
        return None

    async def get_hotel(self, slug: str) -> Optional[HotelOffer]:
        for offer in self.hotels:
            if offer.slug == slug:
                return offer
        return None

    async def search_flights(self, origin, destination, departure_date=None, seats_needed=1, flight_class="economy"):
        results = [
            f for f in self.flights
            if matches_search(f, origin, destination, departure_date, seats_needed, flight_class)
        ]
        return sorted(results, key=lambda f: f.departure_at)

    async def search_cities(self, query=None, limit=50):
        return filter_cities(self.cities, query, limit)

    async def search_places(self, query=None, limit=50):
        return places_from_hotels(self.hotels, query, limit)

    async def flight_date_range(self, now):
        return date_range_of(self.flights, now)

    async def inventory_units(self):
        units = []
        for offer in self.flights:
            units.extend(offer.units())
        for offer in self.hotels:
            units.extend(offer.units())
        return units


class SqlOfferRepository(OfferRepository):
    """flight_offers / hotel_offers tables."""

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    @staticmethod
    def _flight(record) -> FlightOffer:
        return flight_offer_from_dict({
            "code": record.code,
            "departure_at": record.departure_at,
            "arrival_at": record.arrival_at,
            "expire_at": record.expire_at,
            "status": record.status,
            "origin": record.origin,
            "destination": record.destination,
            "airline": record.airline,
            "currency": record.currency,
            "fares": record.fares,
            "seats": record.seats,
        })

    @staticmethod
    def _hotel(record) -> HotelOffer:
        return hotel_offer_from_dict({
            "slug": record.slug,
            "name": record.name,
            "city": record.city,
            "country": record.country,
            "address": record.address,
            "rating": record.rating,
            "currency": record.currency,
            "rooms": record.rooms,
        })

    async def _all_flights(self) -> List[FlightOffer]:
        async with self.session_factory() as db:
            result = await db.execute(select(FlightOfferRecord).order_by(FlightOfferRecord.departure_at))
            return [self._flight(r) for r in result.scalars().all()]

    async def _all_hotels(self) -> List[HotelOffer]:
        async with self.session_factory() as db:
            result = await db.execute(select(HotelOfferRecord))
            return [self._hotel(r) for r in result.scalars().all()]

    async def get_flight(self, code, departure_date):
        start, end = day_bounds(departure_date)
        async with self.session_factory() as db:
            result = await db.execute(
                select(FlightOfferRecord).where(
                    FlightOfferRecord.code == code,
                    FlightOfferRecord.departure_at >= start,
                    FlightOfferRecord.departure_at < end,
                )
            )
            record = result.scalars().first()
            return self._flight(record) if record else None

    async def get_hotel(self, slug):
        async with self.session_factory() as db:
            result = await db.execute(select(HotelOfferRecord).where(HotelOfferRecord.slug == slug))
            record = result.scalar_one_or_none()
            return self._hotel(record) if record else None

    async def search_flights(self, origin, destination, departure_date=None, seats_needed=1, flight_class="economy"):
        flights = await self._all_flights()
        return [
            f for f in flights
            if matches_search(f, origin, destination, departure_date, seats_needed, flight_class)
        ]

    async def search_cities(self, query=None, limit=50):
        airports: Dict[str, Dict[str, Any]] = {}
        for offer in await self._all_flights():
            for airport in (offer.origin, offer.destination):
                if airport.get("code"):
                    airports.setdefault(airport["code"], airport)
        return filter_cities(list(airports.values()), query, limit)

    async def search_places(self, query=None, limit=50):
        return places_from_hotels(await self._all_hotels(), query, limit)

    async def flight_date_range(self, now):
        return date_range_of(await self._all_flights(), now)

    async def inventory_units(self):
        units = []
        for offer in await self._all_flights():
            units.extend(offer.units())
        for offer in await self._all_hotels():
            units.extend(offer.units())
        return units


def build_offer_repository(settings) -> OfferRepository:
    """Pick the catalog backend from settings."""
    if settings.CATALOG_BACKEND == "database":
        logger.info("Offer catalog: database")
        return SqlOfferRepository(get_db_session)
    logger.info(f"Offer catalog: json ({settings.CATALOG_DATA_DIR})")
    return JsonOfferRepository(settings.CATALOG_DATA_DIR)
