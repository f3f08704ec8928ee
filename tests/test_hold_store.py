"""
Tests for the in-memory hold store and the claim planner.
"""
import asyncio
import pytest
from datetime import timedelta

from conftest import ARRIVAL, DEPARTURE, NOW, SEGMENT_ID, make_hold, seat

from destiine.models import BookingStatus, InventoryUnit, PaymentMethod, PaymentStatus, ReservationState
from destiine.services.hold_store import (
    REASON_EXPIRED,
    REASON_PAYMENT_FAILED,
    REASON_SUPERSEDED,
    SYSTEM_ACTOR,
    InMemoryHoldStore,
    plan_claim,
)


@pytest.fixture
def seat_store(clock):
    units = [
        InventoryUnit.seat(seat(n), segment_id=SEGMENT_ID, seat_class="economy", seat_number=n)
        for n in ("10A", "10B", "10C")
    ]
    return InMemoryHoldStore(units, clock=clock)


def cash_booking(user_id, numbers, now=NOW):
    """Pay-on-arrival booking: confirmed at once, guaranteed to the end of the window."""
    record = make_hold(user_id, numbers, now=now)
    record.payment_method = PaymentMethod.CASH.value
    record.booking_status = BookingStatus.CONFIRMED.value
    record.guaranteed_until = record.window_end
    return record


class TestClaimContention:
    """Claims on a shared seat by two users."""

    @pytest.mark.asyncio
    async def test_second_user_rejected_while_hold_is_live(self, seat_store):
        first = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        assert first.success

        second = await seat_store.claim(make_hold(2, ["10A"]), NOW + timedelta(seconds=5))

        assert not second.success
        assert second.conflicting_unit_ids == [seat("10A")]
        held = await seat_store.get_by_code(first.reservation.code)
        assert not held.is_canceled
        assert held.holds_units(NOW + timedelta(seconds=5))

    @pytest.mark.asyncio
    async def test_expired_hold_released_to_next_claimant(self, seat_store):
        first = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        later = NOW + timedelta(minutes=11)

        second = await seat_store.claim(make_hold(2, ["10A"], now=later), later)

        assert second.success
        assert second.expired_codes == [first.reservation.code]
        expired = await seat_store.get_by_code(first.reservation.code)
        assert expired.state == ReservationState.EXPIRED.value
        assert expired.cancel_reason == REASON_EXPIRED
        assert expired.canceled_by == SYSTEM_ACTOR

    @pytest.mark.asyncio
    async def test_claim_is_all_or_nothing(self, seat_store):
        await seat_store.claim(make_hold(1, ["10B"]), NOW)

        outcome = await seat_store.claim(make_hold(2, ["10A", "10B"]), NOW)

        assert not outcome.success
        assert outcome.conflicting_unit_ids == [seat("10B")]
        assert await seat_store.list_for_user(2) == []
        assert await seat_store.is_unit_free(seat("10A"), DEPARTURE, ARRIVAL, requesting_user_id=3)

    @pytest.mark.asyncio
    async def test_unknown_unit_reported_as_conflict(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["99Z"]), NOW)

        assert not outcome.success
        assert outcome.conflicting_unit_ids == [seat("99Z")]

    @pytest.mark.asyncio
    async def test_non_overlapping_windows_do_not_conflict(self, seat_store):
        await seat_store.claim(make_hold(1, ["10A"]), NOW)
        next_day = (DEPARTURE + timedelta(days=1), ARRIVAL + timedelta(days=1))

        outcome = await seat_store.claim(make_hold(2, ["10A"], window=next_day), NOW)

        assert outcome.success

    @pytest.mark.asyncio
    async def test_concurrent_claims_only_one_wins(self, seat_store):
        outcomes = await asyncio.gather(*[
            seat_store.claim(make_hold(user_id, ["10C"]), NOW) for user_id in range(1, 6)
        ])

        assert sum(1 for o in outcomes if o.success) == 1


class TestSameUserClaims:
    @pytest.mark.asyncio
    async def test_identical_claim_extends_existing_hold(self, seat_store):
        first = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        later = NOW + timedelta(minutes=5)

        again = await seat_store.claim(make_hold(1, ["10A"], now=later), later)

        assert again.success
        assert again.extended
        assert again.reservation.code == first.reservation.code
        assert again.reservation.guaranteed_until == later + timedelta(minutes=10)
        assert len(await seat_store.list_for_user(1)) == 1

    @pytest.mark.asyncio
    async def test_different_seats_supersede_previous_hold(self, seat_store):
        first = await seat_store.claim(make_hold(1, ["10A"]), NOW)

        second = await seat_store.claim(make_hold(1, ["10B"]), NOW)

        assert second.success
        assert second.superseded_codes == [first.reservation.code]
        old = await seat_store.get_by_code(first.reservation.code)
        assert old.cancel_reason == REASON_SUPERSEDED
        assert await seat_store.is_unit_free(seat("10A"), DEPARTURE, ARRIVAL, requesting_user_id=2)

    @pytest.mark.asyncio
    async def test_paid_seat_is_not_claimable_by_its_owner(self, seat_store):
        first = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        await seat_store.mark_paid(first.reservation.code, NOW)

        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)

        assert not outcome.success
        assert outcome.conflicting_unit_ids == [seat("10A")]

    @pytest.mark.asyncio
    async def test_cash_claim_leaves_card_hold_untouched(self, seat_store):
        card = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        later = NOW + timedelta(minutes=1)

        cash = await seat_store.claim(cash_booking(1, ["10A"], now=later), later)

        assert cash.success
        assert not cash.extended
        assert cash.reservation.code != card.reservation.code
        assert cash.reservation.payment_method == PaymentMethod.CASH.value
        held = await seat_store.get_by_code(card.reservation.code)
        assert held.payment_method == PaymentMethod.CARD.value
        assert held.guaranteed_until == NOW + timedelta(minutes=10)
        assert not held.is_canceled

    @pytest.mark.asyncio
    async def test_confirmed_cash_booking_blocks_card_claim_by_owner(self, seat_store):
        booked = seat_store.add(cash_booking(1, ["10A"]))

        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)

        assert not outcome.success
        assert outcome.conflicting_unit_ids == [seat("10A")]
        assert booked.guaranteed_until == ARRIVAL
        assert booked.booking_status == BookingStatus.CONFIRMED.value
        assert not booked.is_expired(NOW + timedelta(minutes=11))

    @pytest.mark.asyncio
    async def test_cash_booking_kept_when_owner_books_another_seat(self, seat_store):
        booked = seat_store.add(cash_booking(1, ["10A"]))

        outcome = await seat_store.claim(cash_booking(1, ["10B"]), NOW)

        assert outcome.success
        assert outcome.superseded_codes == []
        assert not booked.is_canceled
        assert booked.booking_status == BookingStatus.CONFIRMED.value

    @pytest.mark.asyncio
    async def test_repeat_cash_claim_keeps_guarantee(self, seat_store):
        booked = seat_store.add(cash_booking(1, ["10A"]))
        later = NOW + timedelta(minutes=5)

        again = await seat_store.claim(cash_booking(1, ["10A"], now=later), later)

        assert again.success
        assert again.extended
        assert again.reservation.code == booked.code
        assert booked.guaranteed_until == ARRIVAL


class TestConditionalExpiry:
    @pytest.mark.asyncio
    async def test_expire_releases_stale_hold(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        later = NOW + timedelta(minutes=11)

        assert await seat_store.expire(outcome.reservation.code, later)

        record = await seat_store.get_by_code(outcome.reservation.code)
        assert record.state == ReservationState.EXPIRED.value
        assert record.cancel_reason == REASON_EXPIRED
        assert record.canceled_by == SYSTEM_ACTOR
        assert record.canceled_at == later

    @pytest.mark.asyncio
    async def test_expire_refuses_live_hold(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)

        assert not await seat_store.expire(outcome.reservation.code, NOW + timedelta(minutes=5))
        assert not outcome.reservation.is_canceled

    @pytest.mark.asyncio
    async def test_expire_refuses_hold_paid_after_it_lapsed(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        code = outcome.reservation.code
        later = NOW + timedelta(minutes=11)
        await seat_store.mark_paid(code, later)

        assert not await seat_store.expire(code, later)

        record = await seat_store.get_by_code(code)
        assert record.payment_status == PaymentStatus.PAID.value
        assert record.state == ReservationState.CONFIRMED.value
        assert not record.is_canceled

    @pytest.mark.asyncio
    async def test_expire_refuses_renewed_hold(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        code = outcome.reservation.code
        later = NOW + timedelta(minutes=11)
        await seat_store.extend(code, later + timedelta(minutes=10))

        assert not await seat_store.expire(code, later)
        assert outcome.reservation.holds_units(later)

    @pytest.mark.asyncio
    async def test_cancel_pending_refuses_paid_record(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        code = outcome.reservation.code
        await seat_store.mark_paid(code, NOW)

        assert not await seat_store.cancel_pending(
            code, "Canceled by user", "user", ReservationState.CANCELED.value, NOW
        )
        assert (await seat_store.get_by_code(code)).state == ReservationState.CONFIRMED.value


class TestReadTimeExpiry:
    @pytest.mark.asyncio
    async def test_expired_pending_hold_frees_unit_without_sweep(self, seat_store, clock):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        assert not await seat_store.is_unit_free(seat("10A"), DEPARTURE, ARRIVAL, requesting_user_id=2)

        clock.advance(minutes=10)

        assert await seat_store.is_unit_free(seat("10A"), DEPARTURE, ARRIVAL, requesting_user_id=2)
        record = await seat_store.get_by_code(outcome.reservation.code)
        assert not record.is_canceled

    @pytest.mark.asyncio
    async def test_own_hold_does_not_block_owner(self, seat_store):
        await seat_store.claim(make_hold(1, ["10A"]), NOW)

        assert await seat_store.is_unit_free(seat("10A"), DEPARTURE, ARRIVAL, requesting_user_id=1)

    @pytest.mark.asyncio
    async def test_expired_holds_listing(self, seat_store):
        stale = await seat_store.claim(make_hold(1, ["10A"], ttl_minutes=1), NOW)
        await seat_store.claim(make_hold(2, ["10B"], ttl_minutes=30), NOW)

        expired = await seat_store.expired_holds(NOW + timedelta(minutes=5))

        assert [r.code for r in expired] == [stale.reservation.code]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        code = outcome.reservation.code

        assert await seat_store.cancel(code, "Canceled by user", "user", ReservationState.CANCELED.value, NOW)
        first_canceled_at = (await seat_store.get_by_code(code)).canceled_at

        again = await seat_store.cancel(code, "other", SYSTEM_ACTOR, ReservationState.EXPIRED.value, NOW + timedelta(hours=1))

        record = await seat_store.get_by_code(code)
        assert again is False
        assert record.canceled_at == first_canceled_at
        assert record.cancel_reason == "Canceled by user"
        assert record.state == ReservationState.CANCELED.value

    @pytest.mark.asyncio
    async def test_cancel_unknown_code(self, seat_store):
        assert not await seat_store.cancel("NOPE00", "x", "user", ReservationState.CANCELED.value, NOW)


class TestPaymentTransitions:
    @pytest.mark.asyncio
    async def test_paying_then_paid(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        code = outcome.reservation.code

        assert await seat_store.mark_paying(code, "pi_1")
        assert (await seat_store.get_by_intent("pi_1")).code == code
        assert await seat_store.mark_paid(code, NOW)
        assert not await seat_store.mark_paid(code, NOW)

        record = await seat_store.get_by_code(code)
        assert record.state == ReservationState.CONFIRMED.value
        assert record.payment_status == PaymentStatus.PAID.value
        # Paid records hold their units past the guarantee window
        assert record.holds_units(NOW + timedelta(days=1))

    @pytest.mark.asyncio
    async def test_mark_paying_only_from_held_or_paying(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        code = outcome.reservation.code

        assert await seat_store.mark_paying(code, "pi_1")
        assert await seat_store.mark_paying(code, "pi_1")
        await seat_store.mark_paid(code, NOW)

        assert not await seat_store.mark_paying(code, "pi_2")
        record = await seat_store.get_by_code(code)
        assert record.payment_intent_id == "pi_1"
        assert record.state == ReservationState.CONFIRMED.value

    @pytest.mark.asyncio
    async def test_mark_paying_refused_for_expired_record(self, seat_store):
        record = seat_store.add(make_hold(1, ["10A"]))
        record.state = ReservationState.EXPIRED.value

        assert not await seat_store.mark_paying(record.code, "pi_1")
        assert record.payment_intent_id is None

    @pytest.mark.asyncio
    async def test_paid_refused_after_cancel(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        await seat_store.cancel(outcome.reservation.code, REASON_EXPIRED, SYSTEM_ACTOR, ReservationState.EXPIRED.value, NOW)

        assert not await seat_store.mark_paid(outcome.reservation.code, NOW)

    @pytest.mark.asyncio
    async def test_payment_failure_releases_hold(self, seat_store):
        outcome = await seat_store.claim(make_hold(1, ["10A"]), NOW)
        code = outcome.reservation.code

        assert await seat_store.mark_payment_failed(code, NOW)
        assert not await seat_store.mark_payment_failed(code, NOW)

        record = await seat_store.get_by_code(code)
        assert record.payment_status == PaymentStatus.FAILED.value
        assert record.cancel_reason == REASON_PAYMENT_FAILED
        assert await seat_store.is_unit_free(seat("10A"), DEPARTURE, ARRIVAL, requesting_user_id=2)


class TestPlanClaim:
    def test_other_users_live_hold_conflicts(self):
        existing = make_hold(1, ["10A", "10B"])
        plan = plan_claim(make_hold(2, ["10B", "10C"]), [existing], [], NOW)

        assert plan.conflicting_unit_ids == [seat("10B")]
        assert plan.expired == []

    def test_expired_touching_record_is_planned_for_expiry(self):
        existing = make_hold(1, ["10A"], now=NOW - timedelta(minutes=30))
        plan = plan_claim(make_hold(2, ["10A"]), [existing], [], NOW)

        assert plan.conflicting_unit_ids == []
        assert plan.expired == [existing]

    def test_confirmed_cash_record_is_neither_reused_nor_superseded(self):
        existing = cash_booking(1, ["10A"])

        other_seat = plan_claim(cash_booking(1, ["10B"]), [], [existing], NOW)
        same_seat_by_card = plan_claim(make_hold(1, ["10A"]), [existing], [existing], NOW)

        assert other_seat.identical is None
        assert other_seat.superseded == []
        assert same_seat_by_card.identical is None
        assert same_seat_by_card.superseded == []
        assert same_seat_by_card.conflicting_unit_ids == [seat("10A")]

    def test_hold_paid_another_way_is_left_alone(self):
        existing = make_hold(1, ["10A"])

        plan = plan_claim(cash_booking(1, ["10B"]), [], [existing], NOW)

        assert plan.identical is None
        assert plan.superseded == []
