"""
databroker/core/http_client.py
Async httpx clients for the two Supabase projects.
  • cms_client()     → service-role client for the CMS (primary store)
  • datalab_client() → service-role client for DataLab (secondary store)

Clients are built once at startup by main.py and handed to the stores;
nothing here holds a process-wide instance.
"""

import httpx

from databroker.core.config import (
    CMS_SUPABASE_KEY, CMS_SUPABASE_URL,
    DATALAB_SUPABASE_KEY, DATALAB_SUPABASE_URL,
)

_LIMITS  = httpx.Limits(max_connections=10, max_keepalive_connections=5)
_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


def supabase_headers(key: str) -> dict[str, str]:
    return {
        "apikey":        key,
        "Authorization": f"Bearer {key}",
        "Accept":        "application/json",
        "Content-Type":  "application/json",
    }


def rest_client(base_url: str, key: str) -> httpx.AsyncClient:
    """Client rooted at the project's PostgREST endpoint (`/rest/v1`)."""
    return httpx.AsyncClient(
        base_url=f"{base_url.rstrip('/')}/rest/v1",
        headers=supabase_headers(key),
        timeout=_TIMEOUT,
        follow_redirects=True,
        limits=_LIMITS,
    )


def cms_client() -> httpx.AsyncClient:
    return rest_client(CMS_SUPABASE_URL or "http://cms.invalid", CMS_SUPABASE_KEY)


def datalab_client() -> httpx.AsyncClient:
    return rest_client(DATALAB_SUPABASE_URL, DATALAB_SUPABASE_KEY)


async def close_all(*clients: httpx.AsyncClient | None) -> None:
    for c in clients:
        if c and not c.is_closed:
            await c.aclose()
