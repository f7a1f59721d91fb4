"""
databroker/broker.py
═══════════════════════════════════════════════════════════════════════════════
Read-through enrichment cache:  DataLab first → CMS fallback → UPSERT → return

  1. Read the secondary store (DataLab), most recent first
  2. Fresh (younger than the stale threshold) → serve it, source="cache"
  3. Otherwise read the primary store (CMS) and derive enriched records
  4. CMS gave nothing → serve stale cached rows (stale=True) or "unavailable"
  5. CMS gave data → serve it, source="broker", and hand the derived rows to
     a detached write-back task (upsert keyed by primary id)
  6. Write-back failures are logged only; the response is already decided

Write-back contract: best effort, no delivery guarantee. Tasks are tracked
so they are not collected mid-flight; drain() waits for them at shutdown.
Concurrent misses may both recompute and both upsert — last write wins.
═══════════════════════════════════════════════════════════════════════════════
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from databroker.core.config import (
    BRIEFING_LIMIT, CATEGORIES_TABLE, HEADLINES_LIMIT, HEADLINES_TABLE,
    POSTS_TABLE, PULSE_TABLE, PULSE_TOP_POSTS, PULSE_WINDOW, STALE_THRESHOLD,
)
from databroker.enrich import (
    build_briefing, build_headline, compute_pulse, headline_row, is_fresh,
    iso, map_headline_row, map_pulse_row,
)

log = logging.getLogger("broker")

KINDS = ("headlines", "pulse", "briefing")

_POST_COLUMNS = "id,title,excerpt,slug,featured_image,published_at,status,category_id"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DataBroker:
    def __init__(
        self,
        primary,
        secondary,
        stale_after: timedelta = STALE_THRESHOLD,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.primary     = primary
        self.secondary   = secondary
        self.stale_after = stale_after
        self._clock      = clock or _utcnow
        self._writebacks: set[asyncio.Task] = set()
        self._last: dict[str, dict] = {}

    # ── Public API ────────────────────────────────────────────────────────────

    async def get(self, kind: str, limit: Optional[int] = None, metric_key: str = "global") -> dict:
        """
        Returns {"data", "source", "fetched_at", "stale"}.
        source is "cache", "broker" or "unavailable" (data is None only then).
        Raises ValueError for an unknown kind; never raises for store trouble.
        """
        if kind == "headlines":
            env = await self.headlines(limit or HEADLINES_LIMIT)
        elif kind == "pulse":
            env = await self.pulse(metric_key)
        elif kind == "briefing":
            env = await self.briefing(limit or BRIEFING_LIMIT)
        else:
            raise ValueError(f"Unknown broker kind '{kind}' (expected one of {', '.join(KINDS)})")

        # keyed by kind only; metric keys come from callers
        self._last[kind] = {"source": env["source"], "stale": env["stale"], "at": self._clock()}
        return env

    async def headlines(self, limit: int = HEADLINES_LIMIT) -> dict:
        now = self._clock()
        try:
            cached = await self.secondary.select(HEADLINES_TABLE, order="published_at", limit=limit)
            if cached is None:
                log.warning("Headlines: DataLab read failed — falling through to CMS")
                cached = []

            if cached and is_fresh(cached[0].get("fetched_at"), now, self.stale_after):
                return self._envelope([map_headline_row(r) for r in cached], "cache", now)

            posts = await self.primary.select(
                POSTS_TABLE,
                columns=_POST_COLUMNS,
                filters=[("status", "eq", "published")],
                order="published_at",
                limit=limit,
            )
            if not posts:
                log.warning(f"Headlines: CMS returned {'nothing' if posts is None else 'no posts'}")
                return self._fallback([map_headline_row(r) for r in cached], now)

            slugs    = await self._category_slugs(posts)
            enriched = [build_headline(p, slugs.get(p.get("category_id"))) for p in posts]

            stamp = iso(now)
            self._write_back(HEADLINES_TABLE, [headline_row(h, stamp) for h in enriched], "post_id")
            log.info(f"Headlines: derived {len(enriched)} from CMS")
            return self._envelope(enriched, "broker", now)
        except Exception as ex:
            log.error(f"Headlines error: {ex}")
            return self._envelope(None, "unavailable", self._clock())

    async def pulse(self, metric_key: str = "global") -> dict:
        now = self._clock()
        try:
            rows = await self.secondary.select(
                PULSE_TABLE, filters=[("metric_key", "eq", metric_key)], limit=1,
            )
            if rows is None:
                log.warning(f"Pulse[{metric_key}]: DataLab read failed — falling through to CMS")
            cached = rows[0] if rows else None

            if cached and is_fresh(cached.get("computed_at"), now, self.stale_after):
                return self._envelope(map_pulse_row(cached), "cache", now)

            recent = await self.primary.select(
                POSTS_TABLE,
                columns="views,title",
                filters=[("status", "eq", "published"), ("published_at", "gte", iso(now - PULSE_WINDOW))],
                order="views",
                limit=PULSE_TOP_POSTS,
            )
            # an empty last-hour window is real data (a quiet hour), a failed read is not
            if recent is None:
                log.warning(f"Pulse[{metric_key}]: CMS read failed")
                return self._fallback(map_pulse_row(cached) if cached else None, now)

            stamp = iso(now)
            data  = compute_pulse(recent, cached, stamp)
            self._write_back(PULSE_TABLE, [{"metric_key": metric_key, **data}], "metric_key")
            return self._envelope(data, "broker", now)
        except Exception as ex:
            log.error(f"Pulse[{metric_key}] error: {ex}")
            return self._envelope(None, "unavailable", self._clock())

    async def briefing(self, limit: int = BRIEFING_LIMIT) -> dict:
        """Per-team quick look built on the headlines path; inherits its source."""
        env = await self.headlines(limit)
        if env["data"] is None:
            return env
        try:
            return {**env, "data": build_briefing(env["data"])}
        except Exception as ex:
            log.error(f"Briefing error: {ex}")
            return self._envelope(None, "unavailable", self._clock())

    async def drain(self) -> None:
        """Wait for outstanding write-backs."""
        while self._writebacks:
            await asyncio.gather(*list(self._writebacks), return_exceptions=True)

    @property
    def pending_writebacks(self) -> int:
        return len(self._writebacks)

    def summary(self) -> dict:
        """Metadata only — safe to expose in /health."""
        now = self._clock()
        return {
            k: {
                "source": v["source"],
                "stale":  v["stale"],
                "age_s":  round((now - v["at"]).total_seconds(), 1),
            }
            for k, v in self._last.items()
        }

    # ── Internals ─────────────────────────────────────────────────────────────

    def _envelope(self, data, source: str, now: datetime, stale: bool = False) -> dict:
        return {"data": data, "source": source, "fetched_at": iso(now), "stale": stale}

    def _fallback(self, stale_data, now: datetime) -> dict:
        if stale_data:
            log.info("Serving stale cache")
            return self._envelope(stale_data, "cache", now, stale=True)
        return self._envelope(None, "unavailable", now)

    async def _category_slugs(self, posts: list[dict]) -> dict:
        ids = list(dict.fromkeys(p["category_id"] for p in posts if p.get("category_id")))
        if not ids:
            return {}
        rows = await self.primary.select(CATEGORIES_TABLE, columns="id,slug", filters=[("id", "in", ids)])
        if rows is None:
            # team detection still works from titles alone
            log.warning("Category lookup failed — tagging from titles only")
            return {}
        return {r.get("id"): r.get("slug") for r in rows}

    def _write_back(self, table: str, rows: list[dict], on_conflict: str) -> None:
        task = asyncio.create_task(self._upsert(table, rows, on_conflict), name=f"writeback:{table}")
        self._writebacks.add(task)
        task.add_done_callback(self._writebacks.discard)

    async def _upsert(self, table: str, rows: list[dict], on_conflict: str) -> None:
        try:
            ok = await self.secondary.upsert(table, rows, on_conflict=on_conflict)
        except asyncio.CancelledError:
            log.warning(f"UPSERT {table} cancelled ({len(rows)} rows dropped)")
            raise
        except Exception as ex:
            log.error(f"UPSERT {table} failed: {ex}")
            return
        if ok:
            log.debug(f"UPSERT {table}: {len(rows)} rows")
        else:
            log.error(f"UPSERT {table} failed ({len(rows)} rows)")
