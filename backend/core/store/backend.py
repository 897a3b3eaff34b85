"""
Row-level table access. The entity store talks only to this interface:
- InMemoryBackend: dict-of-lists storage for tests and local use.
- SupabaseBackend (core/store/supabase_backend.py): PostgREST tables via supabase-py.
Rows are plain dicts keyed by column name; filters are column equality only.
"""
from abc import ABC, abstractmethod
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Optional
import logging
import threading
import uuid

from core.errors import UniquenessViolation
from core.store.tables import ENTITY_TABLES, KIND_TABLE, LINK_TABLES, MATRICES

logger = logging.getLogger(__name__)

_TABLE_KIND = {table: kind for kind, table in KIND_TABLE.items()}

# Tables carrying a unique index on name (matrix names may repeat)
UNIQUE_NAME_TABLES = tuple(t for t in ENTITY_TABLES if t != MATRICES)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TableBackend(ABC):
    """Port for row storage. Implementations raise core.errors types, never driver exceptions."""

    @abstractmethod
    def select(self, table: str, order_by: Optional[str] = None, desc: bool = False) -> list[dict]:
        ...

    @abstractmethod
    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        ...

    @abstractmethod
    def update(self, table: str, row_id: str, values: dict) -> dict:
        ...

    @abstractmethod
    def upsert(self, table: str, row: dict) -> dict:
        ...

    @abstractmethod
    def delete(self, table: str, **filters: Any) -> int:
        ...


class InMemoryBackend(TableBackend):
    """
    In-memory tables. Mirrors the database's unique-name index so duplicate names
    fail the same way in tests; foreign keys are enforced by the entity store.

    Thread safety: a single lock around each operation (snapshot reads run in parallel).
    Persistence: none; data lost on process restart.
    """

    def __init__(self, tables: Optional[dict[str, list[dict]]] = None):
        self._tables: dict[str, list[dict]] = {t: [] for t in ENTITY_TABLES}
        for link in LINK_TABLES:
            self._tables[link.name] = []
        for name, rows in (tables or {}).items():
            self._tables[name] = deepcopy(rows)
        self._lock = threading.Lock()

    def _rows(self, table: str) -> list[dict]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        return self._tables[table]

    def _check_unique(self, table: str, row: dict) -> None:
        if table not in UNIQUE_NAME_TABLES or "name" not in row:
            return
        for existing in self._tables[table]:
            if existing["name"] == row["name"] and existing.get("id") != row.get("id"):
                raise UniquenessViolation(_TABLE_KIND[table], row["name"])

    def select(self, table: str, order_by: Optional[str] = None, desc: bool = False) -> list[dict]:
        with self._lock:
            rows = deepcopy(self._rows(table))
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=desc)
        return rows

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        out = []
        with self._lock:
            target = self._rows(table)
            staged = []
            for row in rows:
                new = deepcopy(row)
                new.setdefault("id", str(uuid.uuid4()))
                now = utc_now()
                new.setdefault("created_at", now)
                if table in ENTITY_TABLES:
                    new.setdefault("updated_at", now)
                self._check_unique(table, new)
                for other in staged:
                    if table in UNIQUE_NAME_TABLES and other.get("name") == new.get("name"):
                        raise UniquenessViolation(_TABLE_KIND[table], new["name"])
                staged.append(new)
            target.extend(staged)
            out = deepcopy(staged)
        return out

    def update(self, table: str, row_id: str, values: dict) -> dict:
        with self._lock:
            for row in self._rows(table):
                if row.get("id") == row_id:
                    merged = {**row, **deepcopy(values), "id": row_id}
                    self._check_unique(table, merged)
                    row.clear()
                    row.update(merged)
                    return deepcopy(row)
        raise KeyError(f"{table} row {row_id} not found")

    def upsert(self, table: str, row: dict) -> dict:
        row_id = row.get("id")
        if row_id is not None:
            with self._lock:
                exists = any(r.get("id") == row_id for r in self._rows(table))
            if exists:
                return self.update(table, row_id, row)
        return self.insert(table, [row])[0]

    def delete(self, table: str, **filters: Any) -> int:
        with self._lock:
            rows = self._rows(table)
            keep = [r for r in rows if not all(r.get(k) == v for k, v in filters.items())]
            removed = len(rows) - len(keep)
            rows[:] = keep
        logger.debug("INMEMORY_DELETE table=%s filters=%s removed=%d", table, filters, removed)
        return removed
