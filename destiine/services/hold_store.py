"""
Hold store

Inventory units plus the reservation records that hold them. The claim is
the only way a reservation enters the store and it is all-or-nothing: either
every requested unit is free for the window and the record is persisted, or
nothing is written and the conflicting unit ids are reported.

Backends (INVENTORY_BACKEND):
- database: SqlHoldStore. The claim locks the requested inventory_units rows
  (sorted, FOR UPDATE) so concurrent claims on a shared unit serialize, then
  checks and inserts inside the same transaction.
- memory: InMemoryHoldStore. Process-local, serialized by an asyncio.Lock.

Validity is always evaluated at read time through Reservation.holds_units,
so a pending record past guaranteed_until never blocks anyone even if no
sweep has touched it yet.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from destiine.core.database import get_db_session
from destiine.core.exceptions import UpstreamError
from destiine.core.utils import as_utc, utcnow, windows_overlap
from destiine.models import (
    BookingStatus,
    InventoryUnit,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    ReservationState,
    ReservationUnit,
)
from destiine.models.reservation import generate_reservation_code

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
REASON_EXPIRED = "expired"
REASON_SUPERSEDED = "superseded"
REASON_PAYMENT_FAILED = "payment_failed"


@dataclass
class ClaimOutcome:
    """Result of an atomic claim attempt."""
    success: bool
    reservation: Optional[Reservation] = None
    conflicting_unit_ids: List[str] = field(default_factory=list)
    expired_codes: List[str] = field(default_factory=list)
    superseded_codes: List[str] = field(default_factory=list)
    extended: bool = False


@dataclass
class ClaimPlan:
    conflicting_unit_ids: List[str]
    expired: List[Reservation]
    identical: Optional[Reservation]
    superseded: List[Reservation]


def plan_claim(
    candidate: Reservation,
    touching: Iterable[Reservation],
    same_offer: Iterable[Reservation],
    now: datetime,
) -> ClaimPlan:
    """
    Decide a claim from the records already in the store.

    touching: non-canceled records sharing at least one requested unit in an
    overlapping window. same_offer: the claimant's non-canceled records on
    the same offer and window.

    A unit conflicts when another user's record holds it, or when a
    confirmed record (the claimant's own included) holds it. The claimant's
    live record with the same units and payment method is reused; its other
    live pending holds paid the same way are superseded. Confirmed records
    are never superseded and records paid another way are left alone.
    """
    requested = set(candidate.unit_ids)
    conflicts = set()
    expired: Dict[str, Reservation] = {}
    identical = None
    superseded = []

    for record in same_offer:
        if record.is_canceled:
            continue
        if record.is_expired(now):
            expired[record.code] = record
            continue
        if not (record.is_reserved and record.holds_units(now)):
            continue
        if record.payment_method != candidate.payment_method:
            continue
        if identical is None and sorted(record.unit_ids or []) == sorted(requested):
            identical = record
        elif record.booking_status == BookingStatus.PENDING.value:
            superseded.append(record)

    for record in touching:
        if record.code in expired or (identical is not None and record.code == identical.code):
            continue
        if record.is_expired(now):
            expired[record.code] = record
            continue
        if not record.holds_units(now):
            continue
        if record.user_id != candidate.user_id or record.booking_status == BookingStatus.CONFIRMED.value:
            conflicts.update(requested.intersection(record.unit_ids or []))

    return ClaimPlan(
        conflicting_unit_ids=sorted(conflicts),
        expired=list(expired.values()),
        identical=identical,
        superseded=superseded,
    )


def reserved_clause():
    """pending/pending, or confirmed with a pending cash payment."""
    return and_(
        Reservation.payment_status == PaymentStatus.PENDING.value,
        or_(
            Reservation.booking_status == BookingStatus.PENDING.value,
            and_(
                Reservation.booking_status == BookingStatus.CONFIRMED.value,
                Reservation.payment_method == PaymentMethod.CASH.value,
            ),
        ),
    )


class HoldStore(ABC):
    """Inventory units and reservation records."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    @abstractmethod
    async def get_unit(self, unit_id: str) -> Optional[InventoryUnit]:
        ...

    @abstractmethod
    async def holds_for_unit(self, unit_id: str, window_start: datetime, window_end: datetime) -> List[Reservation]:
        """Non-canceled records touching the unit in an overlapping window."""

    async def is_unit_free(
        self,
        unit_id: str,
        window_start: datetime,
        window_end: datetime,
        requesting_user_id: Optional[int] = None,
    ) -> bool:
        """
        False when another user holds a valid record on the unit for an
        overlapping window. The requesting user's own holds never make a
        unit unavailable to them. Unknown units are unavailable.
        """
        if await self.get_unit(unit_id) is None:
            return False
        now = self.clock()
        for record in await self.holds_for_unit(unit_id, window_start, window_end):
            if record.user_id != requesting_user_id and record.holds_units(now):
                return False
        return True

    @abstractmethod
    async def claim(self, reservation: Reservation, now: datetime) -> ClaimOutcome:
        ...

    @abstractmethod
    async def find_reserved(
        self,
        user_id: int,
        kind: str,
        offer_ref: Optional[str] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> Optional[Reservation]:
        ...

    @abstractmethod
    async def get_by_code(self, code: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    async def get_by_intent(self, intent_id: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    async def list_for_user(self, user_id: int) -> List[Reservation]:
        ...

    @abstractmethod
    async def cancel(self, code: str, reason: str, actor: str, state: str, now: datetime) -> bool:
        """Cancel once. Returns False if the record was already canceled (or is unknown)."""

    @abstractmethod
    async def cancel_pending(
        self, code: str, reason: str, actor: str, state: str, now: datetime, lapsed_only: bool = False,
    ) -> bool:
        """
        Cancel only while payment is still pending and, with lapsed_only, the
        guarantee has elapsed at `now`. The conditions are checked together
        with the write, so a payment recorded after the caller's read wins.
        """

    async def expire(self, code: str, now: datetime, reason: str = REASON_EXPIRED) -> bool:
        """Expire a pending hold whose guarantee has elapsed. False if it was paid, canceled or renewed."""
        return await self.cancel_pending(
            code, reason, SYSTEM_ACTOR, ReservationState.EXPIRED.value, now, lapsed_only=True
        )

    @abstractmethod
    async def extend(self, code: str, guaranteed_until: datetime) -> bool:
        ...

    @abstractmethod
    async def mark_paying(self, code: str, intent_id: str) -> bool:
        ...

    @abstractmethod
    async def mark_paid(self, code: str, now: datetime) -> bool:
        ...

    @abstractmethod
    async def mark_payment_failed(self, code: str, now: datetime) -> bool:
        ...

    @abstractmethod
    async def expired_holds(self, now: datetime, limit: int = 500) -> List[Reservation]:
        """Pending records whose guarantee elapsed and that are not canceled yet."""


class InMemoryHoldStore(HoldStore):
    """
    Process-local store. Every mutation runs under one asyncio.Lock, which
    makes the claim atomic within the process.
    """

    def __init__(self, units: Optional[Iterable[InventoryUnit]] = None, clock: Callable[[], datetime] = utcnow):
        super().__init__(clock)
        self._units: Dict[str, InventoryUnit] = {}
        self._records: Dict[str, Reservation] = {}
        self._lock = asyncio.Lock()
        self._next_id = 1
        if units:
            self.add_units(units)

    @property
    def unit_count(self) -> int:
        return len(self._units)

    def add_units(self, units: Iterable[InventoryUnit]) -> int:
        added = 0
        for unit in units:
            if unit.id not in self._units:
                self._units[unit.id] = unit
                added += 1
        return added

    def add(self, reservation: Reservation) -> Reservation:
        """Insert a record as-is, without contention checks (imports, fixtures)."""
        reservation.id = self._next_id
        self._next_id += 1
        self._records[reservation.code] = reservation
        return reservation

    def _touching(self, unit_ids: Iterable[str], window_start: datetime, window_end: datetime) -> List[Reservation]:
        wanted = set(unit_ids)
        return [
            r for r in self._records.values()
            if not r.is_canceled
            and wanted.intersection(r.unit_ids or [])
            and windows_overlap(r.window_start, r.window_end, window_start, window_end)
        ]

    async def get_unit(self, unit_id):
        return self._units.get(unit_id)

    async def holds_for_unit(self, unit_id, window_start, window_end):
        return self._touching([unit_id], window_start, window_end)

    async def claim(self, reservation, now):
        async with self._lock:
            unit_ids = sorted(set(reservation.unit_ids))
            missing = [u for u in unit_ids if u not in self._units]
            if missing:
                return ClaimOutcome(success=False, conflicting_unit_ids=missing)

            same_offer = [
                r for r in self._records.values()
                if r.user_id == reservation.user_id
                and r.kind == reservation.kind
                and r.offer_ref == reservation.offer_ref
                and as_utc(r.window_start) == as_utc(reservation.window_start)
                and as_utc(r.window_end) == as_utc(reservation.window_end)
            ]
            plan = plan_claim(
                reservation,
                self._touching(unit_ids, reservation.window_start, reservation.window_end),
                same_offer,
                now,
            )

            for record in plan.expired:
                record.cancel(REASON_EXPIRED, SYSTEM_ACTOR, ReservationState.EXPIRED.value, now)
            expired_codes = [r.code for r in plan.expired]

            if plan.conflicting_unit_ids:
                return ClaimOutcome(
                    success=False,
                    conflicting_unit_ids=plan.conflicting_unit_ids,
                    expired_codes=expired_codes,
                )

            for record in plan.superseded:
                record.cancel(REASON_SUPERSEDED, SYSTEM_ACTOR, ReservationState.CANCELED.value, now)
            superseded_codes = [r.code for r in plan.superseded]

            if plan.identical is not None:
                plan.identical.guaranteed_until = max(
                    as_utc(plan.identical.guaranteed_until), as_utc(reservation.guaranteed_until)
                )
                return ClaimOutcome(
                    success=True,
                    reservation=plan.identical,
                    expired_codes=expired_codes,
                    superseded_codes=superseded_codes,
                    extended=True,
                )

            while reservation.code in self._records:
                reservation.code = generate_reservation_code(reservation.kind)
            reservation.unit_ids = unit_ids
            self.add(reservation)
            return ClaimOutcome(
                success=True,
                reservation=reservation,
                expired_codes=expired_codes,
                superseded_codes=superseded_codes,
            )

    async def find_reserved(self, user_id, kind, offer_ref=None, window_start=None, window_end=None):
        matches = [
            r for r in self._records.values()
            if r.user_id == user_id
            and r.kind == kind
            and r.is_reserved
            and (offer_ref is None or r.offer_ref == offer_ref)
            and (window_start is None or as_utc(r.window_start) == as_utc(window_start))
            and (window_end is None or as_utc(r.window_end) == as_utc(window_end))
        ]
        if not matches:
            return None
        return max(matches, key=lambda r: (as_utc(r.created_at), r.id))

    async def get_by_code(self, code):
        return self._records.get(code)

    async def get_by_intent(self, intent_id):
        for record in self._records.values():
            if record.payment_intent_id == intent_id:
                return record
        return None

    async def list_for_user(self, user_id):
        records = [r for r in self._records.values() if r.user_id == user_id]
        return sorted(records, key=lambda r: (as_utc(r.created_at), r.id), reverse=True)

    async def cancel(self, code, reason, actor, state, now):
        async with self._lock:
            record = self._records.get(code)
            if record is None:
                return False
            return record.cancel(reason, actor, state, now)

    async def cancel_pending(self, code, reason, actor, state, now, lapsed_only=False):
        async with self._lock:
            record = self._records.get(code)
            if record is None or record.payment_status != PaymentStatus.PENDING.value:
                return False
            if lapsed_only and not record.is_expired(now):
                return False
            return record.cancel(reason, actor, state, now)

    async def extend(self, code, guaranteed_until):
        async with self._lock:
            record = self._records.get(code)
            if record is None or record.is_canceled or record.payment_status != PaymentStatus.PENDING.value:
                return False
            record.guaranteed_until = guaranteed_until
            return True

    async def mark_paying(self, code, intent_id):
        async with self._lock:
            record = self._records.get(code)
            if record is None or record.is_canceled:
                return False
            if record.state not in (ReservationState.HELD.value, ReservationState.PAYING.value):
                return False
            record.mark_paying(intent_id)
            return True

    async def mark_paid(self, code, now):
        async with self._lock:
            record = self._records.get(code)
            if record is None or record.is_canceled:
                return False
            return record.mark_paid(now)

    async def mark_payment_failed(self, code, now):
        async with self._lock:
            record = self._records.get(code)
            if record is None or record.payment_status != PaymentStatus.PENDING.value:
                return False
            if not record.cancel(REASON_PAYMENT_FAILED, SYSTEM_ACTOR, ReservationState.CANCELED.value, now):
                return False
            record.payment_status = PaymentStatus.FAILED.value
            return True

    async def expired_holds(self, now, limit=500):
        expired = [r for r in self._records.values() if not r.is_canceled and r.is_expired(now)]
        expired.sort(key=lambda r: as_utc(r.guaranteed_until))
        return expired[:limit]


class SqlHoldStore(HoldStore):
    """
    PostgreSQL-backed store. Each operation runs in its own session from
    session_factory (get_db_session in production).
    """

    def __init__(self, session_factory: Callable, max_attempts: int = 3, clock: Callable[[], datetime] = utcnow):
        super().__init__(clock)
        self.session_factory = session_factory
        self.max_attempts = max_attempts

    @staticmethod
    def _touching_query(unit_ids: List[str], window_start: datetime, window_end: datetime):
        unit_rows = select(ReservationUnit.reservation_id).where(
            ReservationUnit.unit_id.in_(unit_ids),
            ReservationUnit.window_start < window_end,
            ReservationUnit.window_end > window_start,
        )
        return select(Reservation).where(
            Reservation.id.in_(unit_rows),
            Reservation.booking_status != BookingStatus.CANCELED.value,
        )

    async def get_unit(self, unit_id):
        async with self.session_factory() as db:
            return await db.get(InventoryUnit, unit_id)

    async def holds_for_unit(self, unit_id, window_start, window_end):
        async with self.session_factory() as db:
            result = await db.execute(self._touching_query([unit_id], window_start, window_end))
            return list(result.scalars().all())

    async def claim(self, reservation, now):
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.session_factory() as db:
                    return await self._claim(db, reservation, now)
            except IntegrityError:
                # Code collision; anything else the constraint could catch is
                # already excluded by the row locks.
                logger.warning(
                    f"Reservation code collision on claim (attempt {attempt}/{self.max_attempts}), regenerating"
                )
                reservation.code = generate_reservation_code(reservation.kind)
        raise UpstreamError("Could not allocate a reservation code")

    async def _claim(self, db, reservation: Reservation, now: datetime) -> ClaimOutcome:
        unit_ids = sorted(set(reservation.unit_ids))

        # Lock order is by primary key so two multi-unit claims cannot deadlock
        result = await db.execute(
            select(InventoryUnit.id)
            .where(InventoryUnit.id.in_(unit_ids))
            .order_by(InventoryUnit.id)
            .with_for_update()
        )
        known = set(result.scalars().all())
        missing = [u for u in unit_ids if u not in known]
        if missing:
            return ClaimOutcome(success=False, conflicting_unit_ids=missing)

        result = await db.execute(
            self._touching_query(unit_ids, reservation.window_start, reservation.window_end).with_for_update()
        )
        touching = list(result.scalars().all())

        result = await db.execute(
            select(Reservation).where(
                Reservation.user_id == reservation.user_id,
                Reservation.kind == reservation.kind,
                Reservation.offer_ref == reservation.offer_ref,
                Reservation.window_start == reservation.window_start,
                Reservation.window_end == reservation.window_end,
                Reservation.booking_status != BookingStatus.CANCELED.value,
            ).with_for_update()
        )
        same_offer = list(result.scalars().all())

        plan = plan_claim(reservation, touching, same_offer, now)

        for record in plan.expired:
            record.cancel(REASON_EXPIRED, SYSTEM_ACTOR, ReservationState.EXPIRED.value, now)
        expired_codes = [r.code for r in plan.expired]

        if plan.conflicting_unit_ids:
            return ClaimOutcome(
                success=False,
                conflicting_unit_ids=plan.conflicting_unit_ids,
                expired_codes=expired_codes,
            )

        for record in plan.superseded:
            record.cancel(REASON_SUPERSEDED, SYSTEM_ACTOR, ReservationState.CANCELED.value, now)
        superseded_codes = [r.code for r in plan.superseded]

        if plan.identical is not None:
            plan.identical.guaranteed_until = max(
                as_utc(plan.identical.guaranteed_until), as_utc(reservation.guaranteed_until)
            )
            await db.flush()
            return ClaimOutcome(
                success=True,
                reservation=plan.identical,
                expired_codes=expired_codes,
                superseded_codes=superseded_codes,
                extended=True,
            )

        reservation.unit_ids = unit_ids
        reservation.units = [
            ReservationUnit(
                unit_id=unit_id,
                window_start=reservation.window_start,
                window_end=reservation.window_end,
            )
            for unit_id in unit_ids
        ]
        db.add(reservation)
        await db.flush()
        return ClaimOutcome(
            success=True,
            reservation=reservation,
            expired_codes=expired_codes,
            superseded_codes=superseded_codes,
        )

    async def find_reserved(self, user_id, kind, offer_ref=None, window_start=None, window_end=None):
        query = select(Reservation).where(
            Reservation.user_id == user_id,
            Reservation.kind == kind,
            reserved_clause(),
        )
        if offer_ref is not None:
            query = query.where(Reservation.offer_ref == offer_ref)
        if window_start is not None:
            query = query.where(Reservation.window_start == window_start)
        if window_end is not None:
            query = query.where(Reservation.window_end == window_end)
        query = query.order_by(Reservation.created_at.desc(), Reservation.id.desc()).limit(1)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return result.scalars().first()

    async def get_by_code(self, code):
        async with self.session_factory() as db:
            result = await db.execute(select(Reservation).where(Reservation.code == code))
            return result.scalar_one_or_none()

    async def get_by_intent(self, intent_id):
        async with self.session_factory() as db:
            result = await db.execute(select(Reservation).where(Reservation.payment_intent_id == intent_id))
            return result.scalars().first()

    async def list_for_user(self, user_id):
        async with self.session_factory() as db:
            result = await db.execute(
                select(Reservation)
                .where(Reservation.user_id == user_id)
                .order_by(Reservation.created_at.desc(), Reservation.id.desc())
            )
            return list(result.scalars().all())

    async def cancel(self, code, reason, actor, state, now):
        # Conditional update: a second cancel matches no row, canceled_at stays put
        async with self.session_factory() as db:
            result = await db.execute(
                update(Reservation)
                .where(
                    Reservation.code == code,
                    Reservation.booking_status != BookingStatus.CANCELED.value,
                )
                .values(
                    booking_status=BookingStatus.CANCELED.value,
                    state=state,
                    cancel_reason=reason,
                    canceled_by=actor,
                    canceled_at=now,
                )
            )
            return result.rowcount > 0

    async def cancel_pending(self, code, reason, actor, state, now, lapsed_only=False):
        conditions = [
            Reservation.code == code,
            Reservation.booking_status != BookingStatus.CANCELED.value,
            Reservation.payment_status == PaymentStatus.PENDING.value,
        ]
        if lapsed_only:
            conditions += [reserved_clause(), Reservation.guaranteed_until <= now]
        async with self.session_factory() as db:
            result = await db.execute(
                update(Reservation)
                .where(*conditions)
                .values(
                    booking_status=BookingStatus.CANCELED.value,
                    state=state,
                    cancel_reason=reason,
                    canceled_by=actor,
                    canceled_at=now,
                )
            )
            return result.rowcount > 0

    async def extend(self, code, guaranteed_until):
        async with self.session_factory() as db:
            result = await db.execute(
                update(Reservation)
                .where(
                    Reservation.code == code,
                    Reservation.booking_status != BookingStatus.CANCELED.value,
                    Reservation.payment_status == PaymentStatus.PENDING.value,
                )
                .values(guaranteed_until=guaranteed_until)
            )
            return result.rowcount > 0

    async def mark_paying(self, code, intent_id):
        async with self.session_factory() as db:
            result = await db.execute(
                update(Reservation)
                .where(
                    Reservation.code == code,
                    Reservation.booking_status != BookingStatus.CANCELED.value,
                    Reservation.state.in_([ReservationState.HELD.value, ReservationState.PAYING.value]),
                )
                .values(payment_intent_id=intent_id, state=ReservationState.PAYING.value)
            )
            return result.rowcount > 0

    async def mark_paid(self, code, now):
        async with self.session_factory() as db:
            result = await db.execute(
                update(Reservation)
                .where(
                    Reservation.code == code,
                    Reservation.booking_status != BookingStatus.CANCELED.value,
                    Reservation.payment_status != PaymentStatus.PAID.value,
                )
                .values(
                    payment_status=PaymentStatus.PAID.value,
                    booking_status=BookingStatus.CONFIRMED.value,
                    state=ReservationState.CONFIRMED.value,
                    paid_at=now,
                )
            )
            return result.rowcount > 0

    async def mark_payment_failed(self, code, now):
        async with self.session_factory() as db:
            result = await db.execute(
                update(Reservation)
                .where(
                    Reservation.code == code,
                    Reservation.booking_status != BookingStatus.CANCELED.value,
                    Reservation.payment_status == PaymentStatus.PENDING.value,
                )
                .values(
                    payment_status=PaymentStatus.FAILED.value,
                    booking_status=BookingStatus.CANCELED.value,
                    state=ReservationState.CANCELED.value,
                    cancel_reason=REASON_PAYMENT_FAILED,
                    canceled_by=SYSTEM_ACTOR,
                    canceled_at=now,
                )
            )
            return result.rowcount > 0

    async def expired_holds(self, now, limit=500):
        async with self.session_factory() as db:
            result = await db.execute(
                select(Reservation)
                .where(
                    reserved_clause(),
                    Reservation.guaranteed_until <= now,
                )
                .order_by(Reservation.guaranteed_until)
                .limit(limit)
            )
            return list(result.scalars().all())


def build_hold_store(settings, units: Optional[Iterable[InventoryUnit]] = None) -> HoldStore:
    """Pick the inventory backend from settings."""
    if settings.INVENTORY_BACKEND == "memory":
        store = InMemoryHoldStore(units)
        logger.info(f"Hold store: memory ({store.unit_count} units)")
        return store
    logger.info("Hold store: database")
    return SqlHoldStore(get_db_session, max_attempts=settings.HOLD_CLAIM_MAX_ATTEMPTS)
