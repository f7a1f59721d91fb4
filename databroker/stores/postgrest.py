"""
databroker/stores/postgrest.py
═══════════════════════════════════════════════════════════════════════════════
Thin async wrapper over a Supabase project's PostgREST endpoint.

  select → GET  /{table}?select=..&col=op.value&order=col.desc&limit=n
  upsert → POST /{table}?on_conflict=key   Prefer: resolution=merge-duplicates

Failures never raise out of this module:
  • select() returns None  (store unreachable / HTTP error / bad JSON)
  • upsert() returns False
An empty list from select() means the store answered and had no rows.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
from typing import Any, Iterable, Optional

import httpx

log = logging.getLogger("postgrest")

Filter = tuple[str, str, Any]

_OPS = ("eq", "gte", "in")


def _format_value(op: str, value: Any) -> str:
    if op == "in":
        return "in.(" + ",".join(str(v) for v in value) + ")"
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"{op}.{value}"


def build_params(
    columns: str = "*",
    filters: Iterable[Filter] = (),
    order: Optional[str] = None,
    descending: bool = True,
    limit: Optional[int] = None,
) -> list[tuple[str, str]]:
    """Translate a select call into PostgREST query parameters."""
    params: list[tuple[str, str]] = [("select", columns)]
    for column, op, value in filters:
        if op not in _OPS:
            raise ValueError(f"Unsupported filter op: {op}")
        params.append((column, _format_value(op, value)))
    if order:
        params.append(("order", f"{order}.{'desc' if descending else 'asc'}"))
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


class PostgrestStore:
    """Row store backed by a PostgREST endpoint reached through `client`."""

    def __init__(self, client: httpx.AsyncClient, name: str = "postgrest"):
        self.client = client
        self.name   = name

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Iterable[Filter] = (),
        order: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> Optional[list[dict]]:
        params = build_params(columns, filters, order, descending, limit)
        try:
            resp = await self.client.get(f"/{table}", params=params)
            if resp.status_code != 200:
                log.warning(f"{self.name}: HTTP {resp.status_code} selecting {table}")
                return None
            rows = resp.json()
        except (httpx.HTTPError, ValueError) as ex:
            log.warning(f"{self.name}: select {table} failed: {ex}")
            return None
        if not isinstance(rows, list):
            log.warning(f"{self.name}: unexpected payload selecting {table}")
            return None
        return rows

    async def upsert(self, table: str, rows: list[dict], on_conflict: str) -> bool:
        if not rows:
            return True
        try:
            resp = await self.client.post(
                f"/{table}",
                params={"on_conflict": on_conflict},
                json=rows,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )
        except httpx.HTTPError as ex:
            log.warning(f"{self.name}: upsert {table} failed: {ex}")
            return False
        if resp.status_code not in (200, 201, 204):
            log.warning(f"{self.name}: HTTP {resp.status_code} upserting {table}: {resp.text[:200]}")
            return False
        return True
