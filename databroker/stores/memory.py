"""
databroker/stores/memory.py
═══════════════════════════════════════════════════════════════════════════
In-process row store with the same interface as PostgrestStore.
  • Used as the secondary store when DataLab is not configured
  • Writes are protected by a threading lock → atomic replace, never partial
  • Upserts overwrite the supplied columns of the row sharing the conflict
    key, or append a new row (same as PostgREST merge-duplicates)
═══════════════════════════════════════════════════════════════════════════
"""

import copy
import threading
from typing import Any, Iterable, Optional

Filter = tuple[str, str, Any]


def _matches(row: dict, filters: Iterable[Filter]) -> bool:
    for column, op, value in filters:
        cell = row.get(column)
        if op == "eq":
            if cell != value:
                return False
        elif op == "gte":
            if cell is None or cell < value:
                return False
        elif op == "in":
            if cell not in value:
                return False
        else:
            raise ValueError(f"Unsupported filter op: {op}")
    return True


def _project(row: dict, columns: str) -> dict:
    if columns.strip() == "*":
        return copy.deepcopy(row)
    wanted = [c.strip() for c in columns.split(",")]
    return {c: copy.deepcopy(row.get(c)) for c in wanted}


class MemoryStore:
    def __init__(self, tables: Optional[dict[str, list[dict]]] = None, name: str = "memory"):
        self.name = name
        self._tables: dict[str, list[dict]] = {
            t: [dict(r) for r in rows] for t, rows in (tables or {}).items()
        }
        self._lock = threading.Lock()

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Iterable[Filter] = (),
        order: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> Optional[list[dict]]:
        filters = list(filters)
        with self._lock:
            rows = [r for r in self._tables.get(table, []) if _matches(r, filters)]
        if order:
            # rows without the column sort last either way
            present = [r for r in rows if r.get(order) is not None]
            missing = [r for r in rows if r.get(order) is None]
            present.sort(key=lambda r: r[order], reverse=descending)
            rows = present + missing
        if limit is not None:
            rows = rows[:limit]
        return [_project(r, columns) for r in rows]

    async def upsert(self, table: str, rows: list[dict], on_conflict: str) -> bool:
        keys = [k.strip() for k in on_conflict.split(",")]
        with self._lock:
            existing = self._tables.setdefault(table, [])
            for row in rows:
                ident = tuple(row.get(k) for k in keys)
                for i, old in enumerate(existing):
                    if tuple(old.get(k) for k in keys) == ident:
                        existing[i] = {**old, **copy.deepcopy(row)}
                        break
                else:
                    existing.append(copy.deepcopy(row))
        return True

    def rows(self, table: str) -> list[dict]:
        """Snapshot of a table, for /health and tests."""
        with self._lock:
            return [dict(r) for r in self._tables.get(table, [])]
