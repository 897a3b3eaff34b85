"""
Store selection, Supabase credentials, paths, and centralized configuration.
All resolution relative to the backend directory.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Repo root: backend/core/config.py -> parent=core, parent.parent=backend, parent.parent.parent=repo
_BACKEND_DIR = Path(__file__).resolve().parent.parent
_REPO_ROOT = _BACKEND_DIR.parent

STORE_BACKENDS = ("memory", "supabase")


# --- Store ---
def get_store_backend() -> str:
    backend = os.environ.get("STORE_BACKEND", "memory").lower().strip()
    if backend not in STORE_BACKENDS:
        raise ValueError(
            f"Invalid STORE_BACKEND value: {backend}. Expected one of {', '.join(STORE_BACKENDS)}"
        )
    return backend


def get_supabase_url() -> str:
    return (os.environ.get("SUPABASE_URL") or os.environ.get("VITE_SUPABASE_URL") or "").strip()


def get_supabase_key() -> str:
    return (
        os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        or os.environ.get("SUPABASE_KEY")
        or os.environ.get("VITE_SUPABASE_ANON_KEY")
        or ""
    ).strip()


# Parallel reads when taking a store snapshot (one table per worker)
def get_snapshot_workers() -> int:
    return max(1, int(os.environ.get("SNAPSHOT_WORKERS", "8")))


# --- Data paths ---
def get_backup_dir() -> Path:
    return Path(os.environ.get("BACKUP_DIR") or (_REPO_ROOT / "data" / "backups"))


def get_seed_path() -> Path:
    return _REPO_ROOT / "data" / "seed_kitchen.json"


# Load the sample kitchen into an empty in-memory store at startup
def get_seed_demo() -> bool:
    return os.environ.get("SEED_DEMO", "false").lower() in ("1", "true", "yes")


# --- Startup logging ---
def log_config() -> None:
    logger.info(
        "CONFIG: store_backend=%s supabase_url=%s supabase_key=%s snapshot_workers=%d backup_dir=%s seed=%s seed_demo=%s",
        os.environ.get("STORE_BACKEND", "memory"),
        bool(get_supabase_url()), bool(get_supabase_key()),
        get_snapshot_workers(), get_backup_dir(), get_seed_path().exists(), get_seed_demo(),
    )
