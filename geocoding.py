"""Forward geocoding against the Mapbox places API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

MAPBOX_GEOCODE_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"

# Search lookups are biased towards India, centred on Nagpur.
SEARCH_BIAS = {"country": "IN", "proximity": "79.0882,21.1458"}

DEFAULT_TIMEOUT = 10


class GeocodingError(Exception):
    """Raised when the geocoding service cannot be reached or answers garbage."""


@dataclass(frozen=True)
class GeocodeResult:
    longitude: float
    latitude: float
    place_name: str

    @property
    def point(self) -> Dict[str, Any]:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}

    @property
    def city(self) -> str:
        return self.place_name.split(",")[0].strip()


def parse_first_feature(payload: Dict[str, Any]) -> Optional[GeocodeResult]:
    features: List[Dict[str, Any]] = payload.get("features") or []
    if not features:
        return None
    first = features[0]
    center = first.get("center")
    try:
        longitude, latitude = float(center[0]), float(center[1])
    except (TypeError, ValueError, IndexError) as exc:
        raise GeocodingError(f"Malformed feature centre: {center!r}") from exc
    return GeocodeResult(longitude, latitude, first.get("place_name") or "")


def geocode(
    query: str,
    *,
    biased: bool = False,
    token: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Optional[GeocodeResult]:
    """Return the best match for ``query`` or ``None`` when nothing matches.

    ``biased`` restricts the lookup to the search region (used by the listing
    search, not by listing creation). Network and API failures raise
    :class:`GeocodingError`.
    """
    token = token or os.environ.get("MAPBOX_TOKEN")
    if not token:
        raise GeocodingError("MAPBOX_TOKEN is not configured")
    params: Dict[str, Any] = {"limit": 1, "access_token": token}
    if biased:
        params.update(SEARCH_BIAS)
    if timeout is None:
        timeout = float(os.environ.get("GEOCODER_TIMEOUT", DEFAULT_TIMEOUT))
    url = MAPBOX_GEOCODE_URL.format(query=quote(query, safe=""))
    try:
        resp = requests.get(url, params=params, timeout=timeout)
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        logger.exception("Geocoding request failed for %r", query)
        raise GeocodingError(str(exc)) from exc
    if not isinstance(payload, dict):
        raise GeocodingError("Unexpected geocoder response")
    return parse_first_feature(payload)
