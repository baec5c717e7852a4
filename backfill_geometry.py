#!/usr/bin/env python3
"""One-time helper to geocode toilets that were saved without coordinates.

Usage examples:
  python backfill_geometry.py             # geocodes and updates documents
  python backfill_geometry.py --dry-run   # just reports what would change
"""

from __future__ import annotations

import argparse
import os

from dotenv import load_dotenv
from pymongo import MongoClient

from geocoding import GeocodingError, geocode


def missing_geometry_query():
    return {
        "$or": [{"geometry": {"$exists": False}}, {"geometry": None}],
        "location": {"$nin": [None, ""]},
    }


def backfill(db, dry_run: bool) -> tuple:
    updated = 0
    skipped = 0
    for toilet in db.toilets.find(missing_geometry_query()):
        address = toilet.get("location")
        try:
            place = geocode(address)
        except GeocodingError as exc:
            print(f"[SKIP] Geocoder failed for toilet {toilet.get('_id')} ({address!r}): {exc}")
            skipped += 1
            continue
        if place is None:
            print(f"[SKIP] No match for toilet {toilet.get('_id')} ({address!r})")
            skipped += 1
            continue
        if dry_run:
            print(f"[DRY-RUN] Would set {toilet.get('_id')} -> {place.longitude},{place.latitude}")
        else:
            db.toilets.update_one({"_id": toilet.get("_id")}, {"$set": {"geometry": place.point}})
            print(f"[toilet] {toilet.get('_id')} -> {place.place_name}")
        updated += 1
    return updated, skipped


def main() -> None:
    parser = argparse.ArgumentParser(description="Geocode toilets that have an address but no coordinates.")
    parser.add_argument("--dry-run", action="store_true", help="Report actions without writing to MongoDB")
    args = parser.parse_args()

    load_dotenv()
    mongo_uri = os.environ.get("MONGODB_URI", "mongodb://127.0.0.1:27017/toilet_finder")
    db_name = os.environ.get("MONGODB_DB_NAME", "toilet_finder")

    client = MongoClient(mongo_uri)
    db = client[db_name]

    updated, skipped = backfill(db, args.dry_run)

    print("--- Summary ---")
    print(f"Toilets geocoded: {updated}")
    print(f"Toilets skipped: {skipped}")
    if args.dry_run:
        print("Dry-run complete. Re-run without --dry-run to apply changes.")


if __name__ == "__main__":
    main()
