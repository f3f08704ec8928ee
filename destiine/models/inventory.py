"""
Inventory unit model

A seat on a flight segment or a bookable hotel room. Rows are created by the
catalog import and never mutated afterwards: availability is derived from
reservations, not stored on the unit.
"""
import enum

from sqlalchemy import Column, String, JSON, Index

from destiine.core.database import Base


class UnitKind(str, enum.Enum):
    """What kind of inventory a unit is"""
    SEAT = "seat"
    ROOM = "room"


class InventoryUnit(Base):
    """
    A single claimable unit.

    container_ref points at the parent container: the flight segment id for
    seats, the hotel slug for rooms. category is the seat class (economy,
    business, first) or the room type.
    """
    __tablename__ = "inventory_units"

    id = Column(String(64), primary_key=True)
    kind = Column(String(16), nullable=False)
    container_ref = Column(String(128), nullable=False, index=True)
    category = Column(String(64), nullable=False)
    label = Column(String(64), nullable=True)  # seat number / room number
    attributes = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_inventory_units_container_kind", "container_ref", "kind"),
    )

    def __repr__(self):
        return f"<InventoryUnit(id={self.id!r}, kind={self.kind!r}, category={self.category!r})>"

    @classmethod
    def seat(cls, unit_id: str, segment_id: str, seat_class: str, seat_number: str, **attributes) -> "InventoryUnit":
        return cls(
            id=unit_id,
            kind=UnitKind.SEAT.value,
            container_ref=segment_id,
            category=seat_class,
            label=seat_number,
            attributes=dict(attributes),
        )

    @classmethod
    def room(cls, unit_id: str, hotel_slug: str, room_type: str, room_number: str, **attributes) -> "InventoryUnit":
        return cls(
            id=unit_id,
            kind=UnitKind.ROOM.value,
            container_ref=hotel_slug,
            category=room_type,
            label=room_number,
            attributes=dict(attributes),
        )
