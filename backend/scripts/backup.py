"""
Export the kitchen to a dated JSON backup, or merge a backup into the store.
Run from repo root:
    python backend/scripts/backup.py export [--out DIR]
    python backend/scripts/backup.py import path/to/allergycheck-backup-YYYY-MM-DD.json
"""
import argparse
import json
import logging
import sys
from pathlib import Path

# Add backend to path so we can import core
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from core.backup import backup_filename, export_document, import_document
from core.config import get_backup_dir, log_config
from core.errors import AllergyCheckError
from core.store import create_store

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_export(out_dir: Path) -> Path:
    doc = export_document(create_store())
    out = out_dir / backup_filename(doc["exportedAt"])
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2, ensure_ascii=False)
    print("Wrote", out)
    return out


def run_import(path: Path) -> dict:
    summary = import_document(create_store(), path.read_text(encoding="utf-8"))
    print("Created:", summary.created)
    print("Skipped (name exists):", summary.skipped)
    for failure in summary.failed:
        print("Rejected:", failure)
    return summary.to_dict()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="AllergyCheck backup export/import")
    sub = parser.add_subparsers(dest="command", required=True)
    p_export = sub.add_parser("export", help="Write a dated JSON backup")
    p_export.add_argument("--out", type=Path, default=None, help="Output directory (default: BACKUP_DIR)")
    p_import = sub.add_parser("import", help="Merge a JSON backup into the store")
    p_import.add_argument("path", type=Path)
    args = parser.parse_args(argv)

    log_config()
    try:
        if args.command == "export":
            run_export(args.out or get_backup_dir())
        else:
            run_import(args.path)
    except AllergyCheckError as e:
        logger.error("BACKUP %s failed: %s", args.command, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
