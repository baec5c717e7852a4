from __future__ import annotations

import bson
import pytest

from geocoding import GeocodeResult, GeocodingError
from search_filters import (
    LOCATION_LOOKUP_FAILED,
    LOCATION_NOT_FOUND,
    SEARCH_RADIUS_METERS,
    SearchFilter,
    build_search_filter,
    paid_predicate,
    rating_predicate,
)

NAGPUR = GeocodeResult(79.0882, 21.1458, "Nagpur, Maharashtra, India")


def never_called(_text):
    raise AssertionError("geocoder should not be called")


@pytest.mark.parametrize("paid, expected", [("true", {"is_paid": True}), ("false", {"is_paid": False})])
def test_paid_predicate_exact_values(paid, expected):
    assert paid_predicate(paid) == expected


@pytest.mark.parametrize("paid", [None, "", "True", "yes", "1", "on"])
def test_paid_predicate_ignores_other_values(paid):
    assert paid_predicate(paid) == {}


def test_rating_predicate_parses_integer():
    assert rating_predicate("4") == {"cleanliness_rating": {"$gte": 4}}
    assert rating_predicate(" 2 ") == {"cleanliness_rating": {"$gte": 2}}


@pytest.mark.parametrize(
    "raw",
    [None, "", "abc", "3.5", "four", "NaN", "99999999999999999999", "-99999999999999999999", str(2 ** 63)],
)
def test_rating_predicate_ignores_unparseable(raw):
    assert rating_predicate(raw) == {}


def test_rating_predicate_accepts_int64_bounds():
    assert rating_predicate(str(2 ** 63 - 1)) == {"cleanliness_rating": {"$gte": 2 ** 63 - 1}}
    assert rating_predicate(str(-(2 ** 63))) == {"cleanliness_rating": {"$gte": -(2 ** 63)}}


@pytest.mark.parametrize("min_rating", ["4", "99999999999999999999", str(2 ** 63 - 1), "-3"])
def test_built_query_encodes_as_bson(min_rating):
    search = build_search_filter("true", min_rating, "Nagpur", lambda text: NAGPUR)
    assert bson.decode(bson.encode(search.query)) == search.query


def test_blank_location_skips_geocoder():
    search = build_search_filter("true", "3", "   ", never_called)
    assert search.query == {"is_paid": True, "cleanliness_rating": {"$gte": 3}}
    assert search.message is None
    assert not search.is_location_search


def test_location_only_is_purely_geospatial():
    search = build_search_filter(None, None, "Nagpur", lambda text: NAGPUR)
    assert search.query == {
        "geometry": {
            "$near": {
                "$geometry": {"type": "Point", "coordinates": [79.0882, 21.1458]},
                "$maxDistance": SEARCH_RADIUS_METERS,
            }
        }
    }
    assert search.searched_city == "Nagpur"
    assert search.message is None


def test_location_is_merged_with_other_predicates():
    search = build_search_filter("false", "4", "Nagpur", lambda text: NAGPUR)
    assert set(search.query) == {"geometry", "is_paid", "cleanliness_rating"}
    assert search.query["is_paid"] is False
    assert search.query["cleanliness_rating"] == {"$gte": 4}


def test_location_is_trimmed_before_lookup():
    seen = []

    def lookup(text):
        seen.append(text)
        return NAGPUR

    build_search_filter(None, None, "  Nagpur  ", lookup)
    assert seen == ["Nagpur"]


def test_unknown_location_runs_no_query():
    search = build_search_filter("true", None, "Atlantis", lambda text: None)
    assert search.query is None
    assert search.message == LOCATION_NOT_FOUND
    assert search.category == "error"


def test_geocoder_failure_runs_no_query():
    def boom(text):
        raise GeocodingError("timeout")

    search = build_search_filter(None, None, "Nagpur", boom)
    assert search.query is None
    assert search.message == LOCATION_LOOKUP_FAILED


def test_results_message():
    search = SearchFilter(query={}, location="Nagpur", searched_city="Nagpur")
    assert search.results_message(1) == "Found 1 toilet in Nagpur"
    assert search.results_message(3) == "Found 3 toilets in Nagpur"
    empty = search.results_message(0)
    assert empty.startswith("No toilets found within 100 km of Nagpur.")
