# tests/test_scheduler.py
"""Cache warmer: local-time activity window and single-cycle guarantees."""

from __future__ import annotations

from datetime import datetime

import pytest

from conftest import DownStore
from databroker.broker import DataBroker
from databroker.core.config import LOCAL_TZ, WARMER_ACTIVE_S, WARMER_OFFPEAK_S
from databroker.core.scheduler import CacheWarmer, is_active, warm_interval


def _local(hour: int, minute: int = 0) -> datetime:
    return LOCAL_TZ.localize(datetime(2026, 10, 19, hour, minute))


@pytest.mark.parametrize("hour,minute,expected", [
    (18, 0, True),
    (23, 59, True),
    (0, 30, True),
    (1, 0, False),
    (10, 0, False),
    (15, 59, False),
])
def test_active_window(hour, minute, expected):
    assert is_active(_local(hour, minute)) is expected


def test_interval_follows_window():
    assert warm_interval(_local(19)) == WARMER_ACTIVE_S
    assert warm_interval(_local(9)) == WARMER_OFFPEAK_S


class TestCacheWarmer:

    @pytest.mark.asyncio
    async def test_cycle_reads_each_kind(self, broker):
        served = await CacheWarmer(broker).run_cycle()
        await broker.drain()
        assert served == {"headlines": "broker", "pulse": "broker"}

    @pytest.mark.asyncio
    async def test_second_cycle_hits_cache(self, broker):
        warmer = CacheWarmer(broker)
        await warmer.run_cycle()
        await broker.drain()
        assert await warmer.run_cycle() == {"headlines": "cache", "pulse": "cache"}

    @pytest.mark.asyncio
    async def test_overlapping_cycle_skipped(self, broker):
        warmer = CacheWarmer(broker)
        async with warmer._lock:
            assert await warmer.run_cycle() == {}

    @pytest.mark.asyncio
    async def test_outage_does_not_raise(self):
        warmer = CacheWarmer(DataBroker(DownStore(), DownStore()))
        assert await warmer.run_cycle() == {"headlines": "unavailable", "pulse": "unavailable"}

    @pytest.mark.asyncio
    async def test_broker_error_is_contained(self, broker):
        class Boom(DataBroker):
            async def get(self, kind, limit=None, metric_key="global"):
                raise RuntimeError("boom")

        warmer = CacheWarmer(Boom(broker.primary, broker.secondary), kinds=("headlines",))
        assert await warmer.run_cycle() == {"headlines": "error"}
