"""
Supabase (PostgREST) table backend.
Maps Postgres error codes into the kitchen error taxonomy:
23505 unique_violation -> UniquenessViolation, 23503 foreign_key_violation -> ReferentialIntegrityError,
everything else (network, timeouts, other API errors) -> TransientStoreError. No automatic retry.
"""
from typing import Any, Optional
import logging

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client

from core.config import get_supabase_url, get_supabase_key
from core.errors import ReferentialIntegrityError, TransientStoreError, UniquenessViolation
from core.store.backend import TableBackend
from core.store.tables import KIND_TABLE, LINK_TABLES_BY_NAME

logger = logging.getLogger(__name__)

_TABLE_KIND = {table: kind for kind, table in KIND_TABLE.items()}

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


def _kind(table: str) -> str:
    if table in _TABLE_KIND:
        return _TABLE_KIND[table]
    link = LINK_TABLES_BY_NAME.get(table)
    return link.parent_kind if link else table


class SupabaseBackend(TableBackend):
    def __init__(self, client: Optional[Client] = None, url: Optional[str] = None, key: Optional[str] = None):
        if client is None:
            url = url or get_supabase_url()
            key = key or get_supabase_key()
            if not url or not key:
                raise ValueError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required when STORE_BACKEND=supabase"
                )
            client = create_client(url, key)
        self._client = client

    def _execute(self, table: str, op: str, query, name: str = "", row_id: str = "") -> list[dict]:
        try:
            response = query.execute()
        except APIError as e:
            code = getattr(e, "code", None)
            logger.error("SUPABASE_ERROR table=%s op=%s code=%s message=%s", table, op, code, getattr(e, "message", e))
            if code == UNIQUE_VIOLATION:
                raise UniquenessViolation(_kind(table), name or "?") from e
            if code == FOREIGN_KEY_VIOLATION:
                raise ReferentialIntegrityError(_kind(table), row_id or "?", action=op) from e
            raise TransientStoreError(f"{op} on {table} failed: {getattr(e, 'message', e)}") from e
        except httpx.HTTPError as e:
            logger.error("SUPABASE_UNAVAILABLE table=%s op=%s error=%s", table, op, e)
            raise TransientStoreError(f"{op} on {table} failed: store unavailable ({type(e).__name__})") from e
        return list(response.data or [])

    def select(self, table: str, order_by: Optional[str] = None, desc: bool = False) -> list[dict]:
        query = self._client.table(table).select("*")
        if order_by:
            query = query.order(order_by, desc=desc)
        return self._execute(table, "select", query)

    def insert(self, table: str, rows: list[dict]) -> list[dict]:
        if not rows:
            return []
        name = rows[0].get("name", "") if len(rows) == 1 else ""
        return self._execute(table, "insert", self._client.table(table).insert(rows), name=name)

    def update(self, table: str, row_id: str, values: dict) -> dict:
        query = self._client.table(table).update(values).eq("id", row_id)
        data = self._execute(table, "update", query, name=values.get("name", ""), row_id=row_id)
        if not data:
            raise KeyError(f"{table} row {row_id} not found")
        return data[0]

    def upsert(self, table: str, row: dict) -> dict:
        payload = {k: v for k, v in row.items() if v is not None or k != "id"}
        data = self._execute(table, "upsert", self._client.table(table).upsert(payload), name=row.get("name", ""))
        return data[0]

    def delete(self, table: str, **filters: Any) -> int:
        query = self._client.table(table).delete()
        for column, value in filters.items():
            query = query.eq(column, value)
        row_id = str(filters.get("id", ""))
        return len(self._execute(table, "delete", query, row_id=row_id))
