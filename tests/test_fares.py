"""
Tests for fare computation.
"""
import pytest
from decimal import Decimal

from conftest import CATALOG, passenger, room, seat

from destiine.core.exceptions import ValidationError
from destiine.services.catalog import flight_offer_from_dict, hotel_offer_from_dict
from destiine.services.fares import (
    cents_to_dollars,
    dollars_to_cents,
    preview_flight_price,
    quote_flight,
    quote_hotel,
)


@pytest.fixture
def flight():
    return flight_offer_from_dict(CATALOG["flights"][0])


@pytest.fixture
def hotel():
    return hotel_offer_from_dict(CATALOG["hotels"][0])


class TestMoneyConversion:
    def test_dollars_to_cents_rounds_half_up(self):
        assert dollars_to_cents(Decimal("10.005")) == 1001
        assert dollars_to_cents("19.99") == 1999
        assert dollars_to_cents(None) == 0

    def test_cents_to_dollars(self):
        assert cents_to_dollars(1999) == Decimal("19.99")


class TestFlightQuote:
    def test_sums_components_per_passenger(self, flight):
        quote = quote_flight(flight, [
            {"type": "adult", "seat": seat("10A")},
            {"type": "child", "seat": seat("10B")},
            {"type": "infant", "seat": seat("10C")},
        ])

        assert [line.total for line in quote.lines] == [Decimal("115.00"), Decimal("95.00"), Decimal("10.00")]
        assert quote.total == Decimal("220.00")
        assert quote.currency == "USD"

    def test_discount_applied_for_business(self, flight):
        quote = quote_flight(flight, [{"type": "adult", "seat": seat("1A")}])

        line = quote.lines[0]
        assert line.category == "business"
        assert line.total == Decimal("430.00")
        assert line.components["discount"] == Decimal("20.00")

    def test_breakdown_is_serializable(self, flight):
        breakdown = quote_flight(flight, [passenger("10A")]).breakdown()

        assert breakdown[0]["unit_id"] == seat("10A")
        assert breakdown[0]["total"] == "115.00"
        assert breakdown[0]["base"] == "100.00"
        assert breakdown[0]["passenger_type"] == "adult"

    def test_unknown_seat_rejected(self, flight):
        with pytest.raises(ValidationError) as exc_info:
            quote_flight(flight, [{"type": "adult", "seat": "DS101-20270315-99Z"}])

        assert "passengers.0.seat" in exc_info.value.errors

    def test_missing_fare_for_class_rejected(self, flight):
        with pytest.raises(ValidationError) as exc_info:
            quote_flight(flight, [{"type": "child", "seat": seat("1A")}])

        assert "passengers.0.type" in exc_info.value.errors


class TestHotelQuote:
    def test_nightly_rate_and_taxes_times_nights_plus_fees(self, hotel):
        quote = quote_hotel(hotel, [room("101"), room("901")], nights=3)

        # standard: (100 + 10) * 3 + 5, suite: (300 + 30) * 3 + 20
        assert [line.total for line in quote.lines] == [Decimal("335.00"), Decimal("1010.00")]
        assert quote.total == Decimal("1345.00")
        assert quote.lines[0].components["taxes"] == Decimal("30.00")

    def test_zero_nights_rejected(self, hotel):
        with pytest.raises(ValidationError):
            quote_hotel(hotel, [room("101")], nights=0)

    def test_unknown_room_rejected(self, hotel):
        with pytest.raises(ValidationError):
            quote_hotel(hotel, [room("777")], nights=1)


class TestPricePreview:
    def test_party_price(self, flight):
        price = preview_flight_price(flight, "economy", {"adult": 2, "child": 1, "infant": 0})
        assert price == Decimal("325.00")

    def test_missing_passenger_type_gives_none(self, flight):
        assert preview_flight_price(flight, "business", {"adult": 1, "child": 1}) is None
