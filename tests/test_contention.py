"""
Tests for the contention checker.
"""
import pytest
from datetime import timedelta

from conftest import NOW, SEGMENT_ID, make_hold, seat

from destiine.models import InventoryUnit
from destiine.services.contention import ContentionChecker
from destiine.services.hold_store import InMemoryHoldStore


@pytest.fixture
def seat_store(clock):
    units = [
        InventoryUnit.seat(seat(n), segment_id=SEGMENT_ID, seat_class="economy", seat_number=n)
        for n in ("10A", "10B")
    ]
    return InMemoryHoldStore(units, clock=clock)


@pytest.fixture
def checker(seat_store, clock):
    return ContentionChecker(seat_store, clock=clock)


class TestIsHeldByOther:
    @pytest.mark.asyncio
    async def test_live_hold_of_other_user(self, seat_store, checker):
        seat_store.add(make_hold(2, ["10A"]))
        mine = seat_store.add(make_hold(1, ["10A", "10B"]))

        assert await checker.is_held_by_other(seat("10A"), mine)
        assert not await checker.is_held_by_other(seat("10B"), mine)
        assert await checker.conflicting_units(mine) == [seat("10A")]

    @pytest.mark.asyncio
    async def test_claimants_own_records_ignored(self, seat_store, checker):
        mine = seat_store.add(make_hold(1, ["10A"]))
        seat_store.add(make_hold(1, ["10A"]))

        assert not await checker.is_held_by_other(seat("10A"), mine)

    @pytest.mark.asyncio
    async def test_expired_hold_counts_as_free(self, seat_store, checker):
        seat_store.add(make_hold(2, ["10A"], now=NOW - timedelta(minutes=15)))
        mine = seat_store.add(make_hold(1, ["10A"]))

        assert await checker.conflicting_units(mine) == []

    @pytest.mark.asyncio
    async def test_paid_record_holds_past_guarantee(self, seat_store, checker):
        paid = seat_store.add(make_hold(2, ["10A"], now=NOW - timedelta(hours=2)))
        paid.mark_paid(NOW - timedelta(hours=2))
        mine = seat_store.add(make_hold(1, ["10A"]))

        assert await checker.is_held_by_other(seat("10A"), mine)

    @pytest.mark.asyncio
    async def test_canceled_record_is_free(self, seat_store, checker):
        other = seat_store.add(make_hold(2, ["10A"]))
        other.cancel("Canceled by user", "user", "canceled", NOW)
        mine = seat_store.add(make_hold(1, ["10A"]))

        assert not await checker.is_held_by_other(seat("10A"), mine)

    @pytest.mark.asyncio
    async def test_is_unit_free_delegates_to_store(self, seat_store, checker):
        hold = make_hold(2, ["10A"])
        seat_store.add(hold)

        assert not await checker.is_unit_free(seat("10A"), hold.window_start, hold.window_end, 1)
        assert await checker.is_unit_free(seat("10A"), hold.window_start, hold.window_end, 2)
        assert not await checker.is_unit_free("unknown-unit", hold.window_start, hold.window_end, 1)
