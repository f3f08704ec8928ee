"""
Tests for the SQL hold store against a mocked AsyncSession.
"""
import pytest
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from conftest import NOW, make_hold, seat

from destiine.core.exceptions import UpstreamError
from destiine.models import ReservationState
from destiine.services.hold_store import SqlHoldStore


def session_factory_for(*sessions):
    queue = list(sessions)

    @asynccontextmanager
    async def factory():
        yield queue.pop(0)

    return factory


def scalars_result(items):
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(items)
    return result


def rowcount_result(count):
    result = MagicMock()
    result.rowcount = count
    return result


def make_session(*results):
    db = AsyncMock()
    db.add = MagicMock()
    db.execute = AsyncMock(side_effect=list(results))
    db.flush = AsyncMock()
    return db


def compiled(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


class TestSqlClaim:
    @pytest.mark.asyncio
    async def test_claim_locks_units_and_inserts_unit_rows(self):
        db = make_session(
            scalars_result([seat("10A"), seat("10B")]),
            scalars_result([]),
            scalars_result([]),
        )
        store = SqlHoldStore(session_factory_for(db))
        hold = make_hold(1, ["10B", "10A"])

        outcome = await store.claim(hold, NOW)

        assert outcome.success
        assert outcome.reservation is hold
        assert hold.unit_ids == [seat("10A"), seat("10B")]
        assert [u.unit_id for u in hold.units] == [seat("10A"), seat("10B")]
        db.add.assert_called_once_with(hold)
        db.flush.assert_awaited()

        lock_sql = compiled(db.execute.call_args_list[0].args[0])
        assert "FOR UPDATE" in lock_sql
        assert "ORDER BY inventory_units.id" in lock_sql
        assert "FOR UPDATE" in compiled(db.execute.call_args_list[1].args[0])

    @pytest.mark.asyncio
    async def test_claim_conflict_writes_nothing(self):
        other = make_hold(2, ["10A"])
        db = make_session(
            scalars_result([seat("10A")]),
            scalars_result([other]),
            scalars_result([]),
        )
        store = SqlHoldStore(session_factory_for(db))

        outcome = await store.claim(make_hold(1, ["10A"]), NOW)

        assert not outcome.success
        assert outcome.conflicting_unit_ids == [seat("10A")]
        db.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_claim_missing_unit(self):
        db = make_session(scalars_result([]))
        store = SqlHoldStore(session_factory_for(db))

        outcome = await store.claim(make_hold(1, ["10A"]), NOW)

        assert not outcome.success
        assert outcome.conflicting_unit_ids == [seat("10A")]
        assert db.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_claim_expires_stale_touching_record(self):
        stale = make_hold(2, ["10A"], now=NOW - timedelta(minutes=20))
        db = make_session(
            scalars_result([seat("10A")]),
            scalars_result([stale]),
            scalars_result([]),
        )
        store = SqlHoldStore(session_factory_for(db))

        outcome = await store.claim(make_hold(1, ["10A"]), NOW)

        assert outcome.success
        assert outcome.expired_codes == [stale.code]
        assert stale.state == ReservationState.EXPIRED.value

    @pytest.mark.asyncio
    async def test_code_collision_retries_with_new_code(self):
        first = make_session(scalars_result([seat("10A")]), scalars_result([]), scalars_result([]))
        first.flush = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))
        second = make_session(scalars_result([seat("10A")]), scalars_result([]), scalars_result([]))
        store = SqlHoldStore(session_factory_for(first, second), max_attempts=3)
        hold = make_hold(1, ["10A"])

        with patch("destiine.services.hold_store.generate_reservation_code", return_value="NEWCD1"):
            outcome = await store.claim(hold, NOW)

        assert outcome.success
        assert hold.code == "NEWCD1"
        assert len(hold.units) == 1
        second.add.assert_called_once_with(hold)

    @pytest.mark.asyncio
    async def test_code_collision_gives_up_after_max_attempts(self):
        sessions = []
        for _ in range(2):
            db = make_session(scalars_result([seat("10A")]), scalars_result([]), scalars_result([]))
            db.flush = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))
            sessions.append(db)
        store = SqlHoldStore(session_factory_for(*sessions), max_attempts=2)

        with pytest.raises(UpstreamError):
            await store.claim(make_hold(1, ["10A"]), NOW)


class TestSqlTransitions:
    @pytest.mark.asyncio
    async def test_cancel_is_conditional_update(self):
        db = make_session(rowcount_result(1))
        store = SqlHoldStore(session_factory_for(db))

        assert await store.cancel("ABC123", "Canceled by user", "user", ReservationState.CANCELED.value, NOW)

        sql = compiled(db.execute.call_args.args[0])
        assert sql.startswith("UPDATE reservations")
        assert "reservations.booking_status !=" in sql

    @pytest.mark.asyncio
    async def test_cancel_already_canceled_returns_false(self):
        db = make_session(rowcount_result(0))
        store = SqlHoldStore(session_factory_for(db))

        assert not await store.cancel("ABC123", "again", "system", ReservationState.EXPIRED.value, NOW)

    @pytest.mark.asyncio
    async def test_mark_paid_and_failed_report_rowcount(self):
        store = SqlHoldStore(session_factory_for(
            make_session(rowcount_result(1)),
            make_session(rowcount_result(0)),
        ))

        assert await store.mark_paid("ABC123", NOW)
        assert not await store.mark_payment_failed("ABC123", NOW)

    @pytest.mark.asyncio
    async def test_expire_checks_guarantee_and_payment_in_the_update(self):
        db = make_session(rowcount_result(1))
        store = SqlHoldStore(session_factory_for(db))

        assert await store.expire("ABC123", NOW)

        statement = db.execute.call_args.args[0]
        sql = compiled(statement)
        params = statement.compile(dialect=postgresql.dialect()).params
        assert sql.startswith("UPDATE reservations")
        assert "reservations.payment_status =" in sql
        assert "reservations.guaranteed_until <=" in sql
        assert "reservations.booking_status !=" in sql
        assert NOW in params.values()
        assert ReservationState.EXPIRED.value in params.values()

    @pytest.mark.asyncio
    async def test_expire_lost_to_payment_returns_false(self):
        db = make_session(rowcount_result(0))
        store = SqlHoldStore(session_factory_for(db))

        assert not await store.expire("ABC123", NOW)

    @pytest.mark.asyncio
    async def test_cancel_pending_skips_guarantee_check(self):
        db = make_session(rowcount_result(1))
        store = SqlHoldStore(session_factory_for(db))

        assert await store.cancel_pending("ABC123", "Flight expired", "system", ReservationState.EXPIRED.value, NOW)

        sql = compiled(db.execute.call_args.args[0])
        assert "reservations.payment_status =" in sql
        assert "guaranteed_until <=" not in sql

    @pytest.mark.asyncio
    async def test_mark_paying_limited_to_held_or_paying(self):
        db = make_session(rowcount_result(0))
        store = SqlHoldStore(session_factory_for(db))

        assert not await store.mark_paying("ABC123", "pi_1")

        sql = compiled(db.execute.call_args.args[0])
        assert "reservations.state IN" in sql
