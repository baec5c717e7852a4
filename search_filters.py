"""Turns listing search parameters into a MongoDB filter.

Kept free of Flask and PyMongo so it can be exercised on its own; the only
side effect is the injected geocoder lookup.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from geocoding import GeocodeResult, GeocodingError

SEARCH_RADIUS_METERS = 100_000

# MongoDB stores integers in at most 8 bytes.
BSON_INT64_MIN = -(2 ** 63)
BSON_INT64_MAX = 2 ** 63 - 1

LOCATION_NOT_FOUND = "Location not found. Please try a different search term."
LOCATION_LOOKUP_FAILED = "Could not search for that location. Please try again."

Lookup = Callable[[str], Optional[GeocodeResult]]


@dataclass
class SearchFilter:
    # None means the search could not be resolved and no query should run.
    query: Optional[Dict[str, Any]]
    location: str = ""
    searched_city: Optional[str] = None
    message: Optional[str] = None
    category: str = "error"

    @property
    def is_location_search(self) -> bool:
        return bool(self.location)

    def results_message(self, count: int) -> str:
        if count > 0:
            plural = "s" if count > 1 else ""
            return f"Found {count} toilet{plural} in {self.searched_city}"
        radius_km = SEARCH_RADIUS_METERS // 1000
        return (
            f"No toilets found within {radius_km} km of {self.searched_city}. "
            "Try a broader search or add the first toilet in this area."
        )


def paid_predicate(paid: Optional[str]) -> Dict[str, Any]:
    if paid == "true":
        return {"is_paid": True}
    if paid == "false":
        return {"is_paid": False}
    return {}


def rating_predicate(min_rating: Optional[str]) -> Dict[str, Any]:
    if min_rating is None:
        return {}
    try:
        value = int(str(min_rating).strip())
    except ValueError:
        return {}
    if not BSON_INT64_MIN <= value <= BSON_INT64_MAX:
        return {}
    return {"cleanliness_rating": {"$gte": value}}


def near_predicate(point: Dict[str, Any], max_distance: int = SEARCH_RADIUS_METERS) -> Dict[str, Any]:
    return {
        "geometry": {
            "$near": {
                "$geometry": point,
                "$maxDistance": max_distance,
            }
        }
    }


def build_search_filter(
    paid: Optional[str],
    min_rating: Optional[str],
    location: Optional[str],
    lookup: Lookup,
) -> SearchFilter:
    base: Dict[str, Any] = {}
    base.update(paid_predicate(paid))
    base.update(rating_predicate(min_rating))

    location = (location or "").strip()
    if not location:
        return SearchFilter(query=base)

    try:
        result = lookup(location)
    except GeocodingError:
        return SearchFilter(query=None, location=location, message=LOCATION_LOOKUP_FAILED)
    if result is None:
        return SearchFilter(query=None, location=location, message=LOCATION_NOT_FOUND)

    query = near_predicate(result.point)
    query.update(base)
    return SearchFilter(query=query, location=location, searched_city=result.city)
