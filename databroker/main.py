"""
databroker/main.py  — SM Data Broker
Startup: builds the CMS + DataLab store handles, the broker, and (optionally)
the cache warmer. Shutdown: stops the warmer, drains write-backs, closes clients.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from databroker.broker import KINDS, DataBroker
from databroker.core.config import DATALAB_SUPABASE_URL, STALE_THRESHOLD, WARMER_ENABLED
from databroker.core.http_client import close_all, cms_client, datalab_client
from databroker.core.scheduler import CacheWarmer
from databroker.routers import broker as broker_router
from databroker.stores.memory import MemoryStore
from databroker.stores.postgrest import PostgrestStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("main")

DRAIN_TIMEOUT_S = 5.0


def create_app(broker: Optional[DataBroker] = None, warm: bool = WARMER_ENABLED) -> FastAPI:
    """Pass `broker` to serve prebuilt store handles (tests, scripts)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("🚀 SM Data Broker starting...")
        clients = []
        b = broker
        if b is None:
            cms = cms_client()
            clients.append(cms)
            if DATALAB_SUPABASE_URL:
                lab = datalab_client()
                clients.append(lab)
                secondary = PostgrestStore(lab, name="datalab")
            else:
                log.warning("DATALAB_SUPABASE_URL not set — using in-process secondary store")
                secondary = MemoryStore(name="datalab-memory")
            b = DataBroker(PostgrestStore(cms, name="cms"), secondary, stale_after=STALE_THRESHOLD)
        app.state.broker = b

        warmer_task = None
        if warm:
            warmer_task = asyncio.create_task(CacheWarmer(b).run())

        yield

        log.info("🛑 Shutting down...")
        if warmer_task:
            warmer_task.cancel()
            try:
                await warmer_task
            except asyncio.CancelledError:
                pass
        try:
            await asyncio.wait_for(b.drain(), timeout=DRAIN_TIMEOUT_S)
        except asyncio.TimeoutError:
            log.warning(f"{b.pending_writebacks} write-backs still pending at shutdown — dropped")
        await close_all(*clients)

    app = FastAPI(
        title="SM Data Broker",
        description=(
            "Read-through enrichment cache for headline, engagement-pulse and "
            "briefing widgets. DataLab first, CMS fallback, best-effort UPSERT."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    app.include_router(broker_router.router)

    @app.get("/", tags=["meta"])
    async def root():
        return {
            "status":  "online",
            "version": "1.0.0",
            "stores": {
                "primary":   "CMS Supabase (sm_posts, sm_categories)",
                "secondary": "DataLab Supabase (headlines_metadata, engagement_pulse)",
            },
            "endpoints": {
                "headlines": "/broker?type=headlines&limit=12",
                "pulse":     "/broker?type=pulse&metric=global",
                "briefing":  "/broker?type=briefing",
                "health":    "/health",
                "docs":      "/docs",
            },
            "kinds":           list(KINDS),
            "stale_after_min": STALE_THRESHOLD.total_seconds() / 60,
        }

    @app.get("/health", tags=["meta"])
    async def health():
        """Lightweight health check — last served source per kind."""
        b: DataBroker = app.state.broker
        summary = b.summary()
        return {
            "status":             "healthy" if summary else "warming_up",
            "kinds":              summary,
            "pending_writebacks": b.pending_writebacks,
        }

    return app


app = create_app()
