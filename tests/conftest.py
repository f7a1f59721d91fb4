# tests/conftest.py
"""Shared fixtures: a frozen clock, seeded CMS / DataLab stores and stores
that simulate outages. All I/O is in-process."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from databroker.broker import DataBroker
from databroker.enrich import iso
from databroker.stores.memory import MemoryStore

NOW = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class SpyStore(MemoryStore):
    """MemoryStore that records every call."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.select_calls: list[str] = []
        self.upsert_calls: list[tuple[str, list[dict], str]] = []

    async def select(self, table, *args, **kwargs):
        self.select_calls.append(table)
        return await super().select(table, *args, **kwargs)

    async def upsert(self, table, rows, on_conflict):
        self.upsert_calls.append((table, rows, on_conflict))
        return await super().upsert(table, rows, on_conflict)


class DownStore:
    """Every read fails (None), every write fails (False)."""

    def __init__(self):
        self.select_calls = 0
        self.upsert_calls = 0

    async def select(self, table, *args, **kwargs):
        self.select_calls += 1
        return None

    async def upsert(self, table, rows, on_conflict):
        self.upsert_calls += 1
        return False


class ExplodingWriteStore(SpyStore):
    """Reads work, writes raise."""

    async def upsert(self, table, rows, on_conflict):
        self.upsert_calls.append((table, rows, on_conflict))
        raise RuntimeError("datalab write refused")


def make_post(pid: int, title: str, minutes_ago: int, category_id=None,
              views: int = 0, status: str = "published", excerpt=None) -> dict:
    return {
        "id":             pid,
        "title":          title,
        "excerpt":        excerpt,
        "slug":           f"post-{pid}",
        "featured_image": f"https://img.example/{pid}.jpg",
        "published_at":   iso(NOW - timedelta(minutes=minutes_ago)),
        "status":         status,
        "category_id":    category_id,
        "views":          views,
    }


def make_cached_headline(pid: int, title: str, fetched_minutes_ago: int,
                         team_key=None, velocity: int = 0, key_stats=None) -> dict:
    fetched = iso(NOW - timedelta(minutes=fetched_minutes_ago))
    return {
        "post_id":             str(pid),
        "title":               title,
        "excerpt":             None,
        "category":            None,
        "team_key":            team_key,
        "key_stats":           key_stats or [],
        "reliability_score":   100,
        "engagement_velocity": velocity,
        "source":              "cms",
        "featured_image":      None,
        "published_at":        iso(NOW - timedelta(minutes=fetched_minutes_ago + pid)),
        "fetched_at":          fetched,
        "updated_at":          fetched,
    }


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def cms_posts() -> list[dict]:
    return [
        make_post(101, "Caleb Williams throws for 300 yards in 24-17 win", 30, category_id=1, views=60),
        make_post(102, "Cubs agree to $24.5 million deal with reliever", 50, category_id=2, views=40),
        make_post(103, "Blackhawks prospect Bedard named captain", 90, views=25),
        make_post(104, "Unpublished draft column", 5, status="draft", views=999),
    ]


@pytest.fixture
def cms(cms_posts) -> SpyStore:
    return SpyStore(
        {
            "sm_posts": cms_posts,
            "sm_categories": [
                {"id": 1, "slug": "chicago-bears"},
                {"id": 2, "slug": "chicago-cubs"},
            ],
        },
        name="cms",
    )


@pytest.fixture
def datalab() -> SpyStore:
    return SpyStore(name="datalab")


@pytest.fixture
def broker(cms, datalab, clock) -> DataBroker:
    return DataBroker(cms, datalab, clock=clock)
