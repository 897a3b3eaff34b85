"""
Entity store over a pluggable table backend (in-memory or Supabase).
"""
from .backend import InMemoryBackend, TableBackend
from .entity_store import EntityStore
from .factory import create_backend, create_store, get_store, reset_store
from .reorder import ReorderResult, move_item
from .snapshot import StoreSnapshot

__all__ = [
    "InMemoryBackend",
    "TableBackend",
    "EntityStore",
    "create_backend",
    "create_store",
    "get_store",
    "reset_store",
    "ReorderResult",
    "move_item",
    "StoreSnapshot",
]
