#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.ops.status_consistency import audit_store
from achievement_tracker.store import LiveTrackerStore


def main() -> int:
    parser = argparse.ArgumentParser(description="Audit achievement status between MongoDB and PostgreSQL")
    parser.add_argument("--mongo-uri", default=os.getenv("MONGO_URI", ""), help="MongoDB URI")
    parser.add_argument("--mongo-database", default=os.getenv("MONGO_DATABASE", "achievements_db"))
    parser.add_argument(
        "--mongo-collection",
        default=os.getenv("MONGO_ACHIEVEMENTS_COLLECTION", "achievements"),
    )
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument(
        "--references-table",
        default=os.getenv("SAT_REFERENCES_TABLE", "achievement_references"),
    )
    args = parser.parse_args()

    if not str(args.mongo_uri or "").strip():
        raise SystemExit("MONGO_URI is required (pass --mongo-uri or set env)")
    if not str(args.dsn or "").strip():
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    live = LiveTrackerStore(
        mongo_uri=args.mongo_uri,
        mongo_database=args.mongo_database,
        achievements_collection=args.mongo_collection,
        postgres_dsn=args.dsn,
        references_table=args.references_table,
    )
    try:
        result = audit_store(live)
    finally:
        live.close()
    print(json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2))
    return 0 if result["all_consistent"] else 2


if __name__ == "__main__":
    raise SystemExit(main())
