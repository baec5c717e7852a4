from __future__ import annotations

import mongomock
import pytest

import backfill_geometry
from geocoding import GeocodeResult, GeocodingError


@pytest.fixture
def db():
    return mongomock.MongoClient()["backfill_test"]


def fake_geocoder(monkeypatch, answers):
    def fake_geocode(address, biased=False):
        answer = answers[address]
        if isinstance(answer, Exception):
            raise answer
        return answer

    monkeypatch.setattr(backfill_geometry, "geocode", fake_geocode)


def test_backfill_sets_missing_geometry_only(db, monkeypatch):
    db.toilets.insert_many(
        [
            {"name": "needs point", "location": "Sitabuldi, Nagpur"},
            {"name": "null point", "location": "Dharampeth, Nagpur", "geometry": None},
            {"name": "has point", "location": "Somewhere", "geometry": {"type": "Point", "coordinates": [1, 2]}},
            {"name": "no address", "location": ""},
        ]
    )
    fake_geocoder(
        monkeypatch,
        {
            "Sitabuldi, Nagpur": GeocodeResult(79.08, 21.14, "Sitabuldi, Nagpur"),
            "Dharampeth, Nagpur": GeocodeResult(79.06, 21.13, "Dharampeth, Nagpur"),
        },
    )

    updated, skipped = backfill_geometry.backfill(db, dry_run=False)

    assert (updated, skipped) == (2, 0)
    assert db.toilets.find_one({"name": "needs point"})["geometry"]["coordinates"] == [79.08, 21.14]
    assert db.toilets.find_one({"name": "has point"})["geometry"]["coordinates"] == [1, 2]
    assert "geometry" not in db.toilets.find_one({"name": "no address"})


def test_backfill_dry_run_writes_nothing(db, monkeypatch):
    db.toilets.insert_one({"name": "needs point", "location": "Sitabuldi, Nagpur"})
    fake_geocoder(monkeypatch, {"Sitabuldi, Nagpur": GeocodeResult(79.08, 21.14, "Sitabuldi, Nagpur")})

    assert backfill_geometry.backfill(db, dry_run=True) == (1, 0)
    assert "geometry" not in db.toilets.find_one({})


def test_backfill_skips_unmatched_and_failed_lookups(db, monkeypatch):
    db.toilets.insert_many([{"location": "Atlantis"}, {"location": "Nagpur"}])
    fake_geocoder(monkeypatch, {"Atlantis": None, "Nagpur": GeocodingError("down")})

    assert backfill_geometry.backfill(db, dry_run=False) == (0, 2)
    assert db.toilets.count_documents({"geometry": {"$exists": True}}) == 0
