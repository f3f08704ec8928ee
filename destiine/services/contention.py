"""
Contention checker

Decides whether a unit is held by a different, still valid claimant. Used at
payment time to re-validate a hold: any unit found taken by someone else
makes the caller cancel the *requesting* reservation.

A record holds a unit when it is not canceled and is either paid, or pending
payment with guaranteed_until in the future. Expired holds count as free
whether or not anything has canceled them yet.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from destiine.core.utils import utcnow
from destiine.models import Reservation
from destiine.services.hold_store import HoldStore

logger = logging.getLogger(__name__)


class ContentionChecker:
    def __init__(self, store: HoldStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def is_held_by_other(self, unit_id: str, claimant: Reservation, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        holds = await self.store.holds_for_unit(unit_id, claimant.window_start, claimant.window_end)
        for record in holds:
            if record.code == claimant.code or record.user_id == claimant.user_id:
                continue
            if record.holds_units(now):
                logger.info(f"Unit {unit_id} of {claimant.code} is held by {record.code}")
                return True
        return False

    async def conflicting_units(self, claimant: Reservation, now: Optional[datetime] = None) -> List[str]:
        now = now or self.clock()
        return [
            unit_id for unit_id in claimant.unit_ids or []
            if await self.is_held_by_other(unit_id, claimant, now)
        ]

    async def is_unit_free(self, unit_id: str, window_start: datetime, window_end: datetime, requesting_user_id=None) -> bool:
        return await self.store.is_unit_free(unit_id, window_start, window_end, requesting_user_id)
