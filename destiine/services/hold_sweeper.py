"""
Hold sweeper

Background task that expires pending holds past their guarantee window.
Read-time checks already treat such holds as free; the sweep only makes the
release visible in the store without waiting for the next read.
Started from the app lifespan when HOLD_SWEEP_ENABLED.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Any

from destiine.core.utils import utcnow
from destiine.services.hold_store import HoldStore

logger = logging.getLogger(__name__)


class HoldSweeper:
    def __init__(
        self,
        store: HoldStore,
        interval_seconds: int = 60,
        batch_size: int = 500,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.clock = clock
        self.heartbeat: Dict[str, Any] = {
            "last_run": None,
            "last_success": None,
            "records_processed": 0,
            "errors": 0,
        }

    async def sweep(self) -> dict:
        """
        Expire every pending hold whose guarantee has elapsed.

        Returns:
            dict with counts of examined and expired holds
        """
        now = self.clock()
        stats = {"examined": 0, "expired": 0}
        for record in await self.store.expired_holds(now, self.batch_size):
            stats["examined"] += 1
            if await self.store.expire(record.code, now):
                stats["expired"] += 1
        if stats["expired"]:
            logger.info(f"Hold sweep: expired {stats['expired']} of {stats['examined']} stale holds")
        else:
            logger.debug("No expired holds to sweep")
        return stats

    async def run_once(self) -> None:
        """One sweep with heartbeat bookkeeping; errors are counted, not raised."""
        self.heartbeat["last_run"] = utcnow().isoformat()
        try:
            stats = await self.sweep()
        except Exception as e:
            self.heartbeat["errors"] += 1
            logger.error(f"Hold sweep failed: {e}")
            return
        self.heartbeat["last_success"] = utcnow().isoformat()
        self.heartbeat["records_processed"] += stats["expired"]

    async def run_forever(self) -> None:
        """Runs until cancelled during shutdown."""
        logger.info(f"Hold sweeper started (interval: {self.interval_seconds} seconds)")
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
