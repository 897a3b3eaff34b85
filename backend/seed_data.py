"""
Load the sample kitchen (data/seed_kitchen.json) into the configured store.
Run from repo root: python backend/seed_data.py
Records whose names already exist are skipped, so re-running is safe.
"""
import json
import logging
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional

# Load env vars
load_dotenv(Path(__file__).parent / ".env")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from core.backup import import_document
from core.config import get_seed_path, log_config
from core.store import EntityStore, create_store


def seed_store(store: EntityStore, path: Optional[Path] = None) -> dict:
    path = path or get_seed_path()
    with open(path, "r", encoding="utf-8") as f:
        doc = json.load(f)
    summary = import_document(store, doc)
    logger.info("SEED loaded path=%s created=%s skipped=%s", path, summary.created, summary.skipped)
    for failure in summary.failed:
        logger.warning("SEED rejected %s", failure)
    return summary.to_dict()


def seed_data():
    log_config()
    seed_store(create_store())


if __name__ == "__main__":
    seed_data()
