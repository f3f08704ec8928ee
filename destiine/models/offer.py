"""
Catalog models

Store-backed flight and hotel offers. The JSON files under CATALOG_DATA_DIR
carry the same shape; see services/catalog.py for the normalization.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Numeric, Index, UniqueConstraint

from destiine.core.database import Base


class FlightOfferRecord(Base):
    """One dated departure of a flight code."""
    __tablename__ = "flight_offers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(16), nullable=False, index=True)
    departure_at = Column(DateTime(timezone=True), nullable=False)
    arrival_at = Column(DateTime(timezone=True), nullable=False)
    expire_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(32), nullable=False, default="scheduled")

    # {"code", "city", "name", "country"}
    origin = Column(JSON, nullable=False)
    destination = Column(JSON, nullable=False)
    # {"code", "name"}
    airline = Column(JSON, nullable=False)

    currency = Column(String(3), nullable=False, default="USD")
    # {seat_class: {passenger_type: {base, taxes, service_fee, discount}}}
    fares = Column(JSON, nullable=False, default=dict)
    # {seat_class: ["12A", "12B", ...]}
    seats = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("code", "departure_at", name="uq_flight_offers_code_departure"),
        Index("ix_flight_offers_route", "departure_at"),
    )

    def __repr__(self):
        return f"<FlightOfferRecord(code={self.code!r}, departure_at={self.departure_at!r})>"


class HotelOfferRecord(Base):
    __tablename__ = "hotel_offers"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(128), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    city = Column(String(128), nullable=False, index=True)
    country = Column(String(128), nullable=False)
    address = Column(String(500), nullable=True)
    rating = Column(Numeric(2, 1), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    # {room_type: {nightly_rate, taxes, fees, max_guests, numbers: [...]}}
    rooms = Column(JSON, nullable=False, default=dict)

    def __repr__(self):
        return f"<HotelOfferRecord(slug={self.slug!r})>"
