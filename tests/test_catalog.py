"""
Tests for the offer catalog.
"""
import pytest
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

from conftest import CATALOG, NOW, SEGMENT_ID

from destiine.models import UnitKind
from destiine.services.catalog import (
    JsonOfferRepository,
    SqlOfferRepository,
    build_offer_repository,
    flight_offer_from_dict,
    parse_datetime,
    segment_id_for,
)


class TestNormalization:
    def test_segment_id(self):
        assert segment_id_for("DS101", date(2027, 3, 15)) == "DS101-20270315"

    def test_parse_datetime_accepts_z_suffix(self):
        assert parse_datetime("2027-03-15T08:00:00Z") == datetime(2027, 3, 15, 8, 0, tzinfo=timezone.utc)

    def test_flight_units(self):
        offer = flight_offer_from_dict(CATALOG["flights"][0])

        units = offer.units()

        assert offer.segment_id == SEGMENT_ID
        assert offer.duration_minutes == 210
        assert len(units) == 4
        assert {u.kind for u in units} == {UnitKind.SEAT.value}
        assert offer.seat_class_of(f"{SEGMENT_ID}-1A") == "business"
        assert offer.seat_class_of("DS101-20270316-1A") is None


class TestJsonOfferRepository:
    @pytest.mark.asyncio
    async def test_get_flight_by_code_and_date(self, catalog):
        offer = await catalog.get_flight("DS101", date(2027, 3, 15))

        assert offer is not None
        assert offer.is_demo
        assert await catalog.get_flight("DS101", date(2027, 3, 16)) is None

    @pytest.mark.asyncio
    async def test_search_flights_filters_route_and_seats(self, catalog):
        found = await catalog.search_flights("cgk", "SIN", date(2027, 3, 15), seats_needed=2)
        too_many = await catalog.search_flights("CGK", "SIN", date(2027, 3, 15), seats_needed=2, flight_class="business")

        assert [f.code for f in found] == ["DS101"]
        assert too_many == []

    @pytest.mark.asyncio
    async def test_search_cities(self, catalog):
        cities = await catalog.search_cities("tok")

        assert cities == [{
            "iata_code": "NRT",
            "name": "Narita, Japan",
            "city": "Tokyo",
            "country": "Japan",
            "type": "airport",
        }]
        assert len(await catalog.search_cities(None, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_search_places_counts_hotels(self, catalog):
        places = await catalog.search_places()

        assert places == [
            {"city": "Jakarta", "country": "Indonesia", "hotel_count": 1},
            {"city": "Singapore", "country": "Singapore", "hotel_count": 1},
        ]

    @pytest.mark.asyncio
    async def test_date_range_skips_departed(self, catalog):
        window = await catalog.flight_date_range(NOW)

        assert window["from"] == datetime(2027, 3, 15, 8, 0, tzinfo=timezone.utc)
        assert window["to"] == window["from"]

    @pytest.mark.asyncio
    async def test_inventory_units_cover_seats_and_rooms(self, catalog):
        units = await catalog.inventory_units()

        assert len(units) == 4 + 1 + 3 + 1
        assert "harbour-view-901" in {u.id for u in units}

    @pytest.mark.asyncio
    async def test_missing_files_give_empty_catalog(self, tmp_path):
        repo = JsonOfferRepository(str(tmp_path))

        assert await repo.search_places() == []
        window = await repo.flight_date_range(NOW)
        assert window["from"] == NOW


class TestSqlOfferRepository:
    @pytest.mark.asyncio
    async def test_get_hotel_maps_record(self, mock_db):
        record = SimpleNamespace(
            slug="harbour-view", name="Harbour View Hotel", city="Singapore", country="Singapore",
            address=None, rating=None, currency="USD",
            rooms={"standard": {"nightly_rate": "100.00", "max_guests": 2, "numbers": ["101"]}},
        )
        result = MagicMock()
        result.scalar_one_or_none.return_value = record
        mock_db.execute.return_value = result

        @asynccontextmanager
        async def factory():
            yield mock_db

        offer = await SqlOfferRepository(factory).get_hotel("harbour-view")

        assert offer.slug == "harbour-view"
        assert not offer.is_demo
        assert offer.room_type_of("harbour-view-101") == "standard"


class TestBuildOfferRepository:
    def test_backend_selection(self):
        assert isinstance(
            build_offer_repository(SimpleNamespace(CATALOG_BACKEND="json", CATALOG_DATA_DIR="data")),
            JsonOfferRepository,
        )
        assert isinstance(
            build_offer_repository(SimpleNamespace(CATALOG_BACKEND="database", CATALOG_DATA_DIR="data")),
            SqlOfferRepository,
        )
