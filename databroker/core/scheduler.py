"""
databroker/core/scheduler.py
═══════════════════════════════════════════════════════════════════════════════
Optional cache warmer (BROKER_WARMER_ENABLED=1):

  1. ONE warmer loop per broker (guarded by _running flag)
  2. ONE warm cycle at a time (asyncio.Lock — overlapping cycles skipped)
  3. Failed cycle → logged, loop continues; the broker already keeps the
     last good rows in DataLab
  4. Chicago-time aware interval:
       16:00–01:00 local (games + post-game coverage) → active interval
       otherwise                                       → off-peak interval

Each cycle just reads through the broker, so a stale cache gets recomputed
before a page asks for it.
═══════════════════════════════════════════════════════════════════════════════
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from databroker.broker import DataBroker
from databroker.core.config import (
    ACTIVE_HOURS_END, ACTIVE_HOURS_START, LOCAL_TZ,
    WARMER_ACTIVE_S, WARMER_OFFPEAK_S,
)

log = logging.getLogger("scheduler")


def is_active(now: Optional[datetime] = None) -> bool:
    hour = (now or datetime.now(LOCAL_TZ)).astimezone(LOCAL_TZ).hour
    return hour >= ACTIVE_HOURS_START or hour < ACTIVE_HOURS_END


def warm_interval(now: Optional[datetime] = None) -> int:
    return WARMER_ACTIVE_S if is_active(now) else WARMER_OFFPEAK_S


class CacheWarmer:
    def __init__(self, broker: DataBroker, kinds: tuple[str, ...] = ("headlines", "pulse")):
        self.broker   = broker
        self.kinds    = kinds
        self._lock    = asyncio.Lock()
        self._running = False

    async def run_cycle(self) -> dict[str, str]:
        """Read every kind once. Returns kind → source served ({} if skipped)."""
        if self._lock.locked():
            log.warning("Previous warm cycle still running — skipping")
            return {}

        async with self._lock:
            t0 = time.time()
            served = {}
            for kind in self.kinds:
                try:
                    env = await self.broker.get(kind)
                    served[kind] = env["source"]
                except Exception as ex:
                    log.error(f"Warm {kind} error: {ex}")
                    served[kind] = "error"
            log.info(f"Warm cycle complete in {time.time() - t0:.1f}s: {served}")
            return served

    async def run(self) -> None:
        """
        Called once at startup. Runs until cancelled.
        A second call while running is ignored.
        """
        if self._running:
            log.warning("Warmer already running — ignoring duplicate start")
            return
        self._running = True
        log.info("Cache warmer started")
        try:
            while True:
                try:
                    await self.run_cycle()
                except Exception as ex:
                    log.error(f"Warm cycle error (continuing): {ex}")
                interval = warm_interval()
                log.debug(f"Next warm cycle in {interval}s ({'active' if is_active() else 'off-peak'})")
                await asyncio.sleep(interval)
        finally:
            self._running = False
