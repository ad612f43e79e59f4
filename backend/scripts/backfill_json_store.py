"""Copy a JSON user-state snapshot into the ``user_records`` table."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from learnsync.db.session import ensure_schema, session_scope
from learnsync.repositories.user_records import user_records
from learnsync.user_state import DATA_DIR, DEFAULT_STATE_FILE, UserRecord

logger = logging.getLogger("learnsync.backfill")


def backfill_user_state(path: Path) -> int:
    if not path.exists():
        logger.info("No JSON user state found at %s", path)
        return 0
    with path.open(encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        logger.warning("User state at %s was not a mapping; skipping", path)
        return 0

    imported = 0
    with session_scope() as session:
        for identity, entry in payload.items():
            try:
                record = UserRecord.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Skipping invalid record for %s: %s", identity, exc)
                continue
            if record.identity != identity:
                logger.warning("Record keyed %s names identity %s; using the key", identity, record.identity)
                record.identity = identity
            user_records.upsert(session, record)
            imported += 1
    logger.info("Imported %d user records", imported)
    return imported


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill the JSON user-state snapshot into the database.")
    parser.add_argument("--path", type=Path, default=DATA_DIR / DEFAULT_STATE_FILE)
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = parse_args(argv)
    ensure_schema()
    backfill_user_state(args.path)


if __name__ == "__main__":
    main()
