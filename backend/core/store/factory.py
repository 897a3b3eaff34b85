"""
Store factory: picks the table backend from STORE_BACKEND.
- "memory": InMemoryBackend (tests, local demo; data lost on restart)
- "supabase": SupabaseBackend (production; needs SUPABASE_URL and a key)
"""
from typing import Optional
import logging

from core.allergens import AllergenCatalog, DEFAULT_CATALOG
from core.config import get_store_backend
from core.store.backend import InMemoryBackend, TableBackend
from core.store.entity_store import EntityStore
from core.store.supabase_backend import SupabaseBackend

logger = logging.getLogger(__name__)

_store: Optional[EntityStore] = None


def create_backend(kind: Optional[str] = None) -> TableBackend:
    kind = kind or get_store_backend()
    if kind == "supabase":
        return SupabaseBackend()
    if kind == "memory":
        return InMemoryBackend()
    raise ValueError(f"Invalid store backend: {kind}. Expected 'memory' or 'supabase'")


def create_store(kind: Optional[str] = None, catalog: AllergenCatalog = DEFAULT_CATALOG) -> EntityStore:
    backend = create_backend(kind)
    logger.info("STORE_INIT backend=%s", type(backend).__name__)
    return EntityStore(backend, catalog=catalog)


def get_store() -> EntityStore:
    """Process-wide store, created on first use."""
    global _store
    if _store is None:
        _store = create_store()
    return _store


def reset_store() -> None:
    global _store
    _store = None
