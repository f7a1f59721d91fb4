"""
databroker/routers/broker.py
Endpoints:
  GET /broker?type=headlines&limit=12   → enriched headlines envelope
  GET /broker?type=pulse&metric=global  → engagement pulse envelope
  GET /broker?type=briefing&limit=20    → per-team briefing envelope

Every response is {"data", "source", "fetched_at", "stale"}; store outages
show up as source="unavailable", never as a 5xx.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from databroker.broker import KINDS, DataBroker

router = APIRouter(tags=["broker"])


def get_broker(request: Request) -> DataBroker:
    return request.app.state.broker


@router.get("/broker")
async def read_broker(
    request: Request,
    kind:   str           = Query("headlines", alias="type", description="headlines | pulse | briefing"),
    limit:  Optional[int] = Query(None, ge=1, le=100),
    metric: str           = Query("global", min_length=1, max_length=64),
):
    if kind not in KINDS:
        raise HTTPException(400, detail=f"Unknown type '{kind}'. Use one of: {', '.join(KINDS)}")
    return await get_broker(request).get(kind, limit=limit, metric_key=metric)
