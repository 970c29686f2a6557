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

from achievement_tracker.db.mongo import MongoCollectionProvider
from achievement_tracker.db.postgres import PostgresTxRunner, apply_schema
from achievement_tracker.repositories import MongoAchievementsRepository


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the achievement reference table and document store indexes")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument("--mongo-uri", default=os.getenv("MONGO_URI", ""), help="MongoDB URI; indexes skipped when empty")
    parser.add_argument("--mongo-database", default=os.getenv("MONGO_DATABASE", "achievements_db"))
    parser.add_argument(
        "--mongo-collection",
        default=os.getenv("MONGO_ACHIEVEMENTS_COLLECTION", "achievements"),
    )
    args = parser.parse_args()

    dsn = str(args.dsn or "").strip()
    if not dsn:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    statements = apply_schema(PostgresTxRunner(dsn))
    result: dict[str, object] = {"postgres_statements": statements, "mongo_indexes": False}

    mongo_uri = str(args.mongo_uri or "").strip()
    if mongo_uri:
        provider = MongoCollectionProvider(uri=mongo_uri, database=args.mongo_database)
        try:
            MongoAchievementsRepository(collection=provider.collection(args.mongo_collection)).ensure_indexes()
        finally:
            provider.close()
        result["mongo_indexes"] = True

    print(json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
