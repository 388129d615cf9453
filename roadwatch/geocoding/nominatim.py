import requests
import time
import os
import logging
from typing import Optional, List
from threading import Lock

from roadwatch.geocoding.normalizer import normalize
from roadwatch.models.pothole import GeocodeResult, SearchResult

# Constants
NOMINATIM_URL = os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org").rstrip("/")
USER_AGENT = os.getenv("GEOCODER_USER_AGENT", "RoadWatchGeocoder/1.0 (pothole geocoding)")
REQUEST_TIMEOUT = float(os.getenv("GEOCODER_TIMEOUT", "10"))
RATE_LIMIT_DELAY = 1.1
ACCEPT_LANGUAGE = "pt"
SEARCH_LIMIT = 5
MIN_QUERY_LENGTH = 2
DEFAULT_ZOOM = 13

# Get logger
logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    """Raised when the geocoding provider cannot answer a request."""


class RateLimiter:
    """
    Enforces a minimum interval between consecutive provider calls.

    Nominatim's public usage policy allows roughly one request per second,
    so batch jobs share a single limiter for every call they make.
    """

    def __init__(self, min_interval=RATE_LIMIT_DELAY, clock=time.monotonic, sleep=time.sleep):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_call = None
        self._lock = Lock()

    def wait(self):
        with self._lock:
            if self._last_call is not None:
                remaining = self._last_call + self.min_interval - self._clock()
                if remaining > 0:
                    logger.debug(f"Rate limiting geocoding request for {remaining:.2f}s")
                    self._sleep(remaining)
            self._last_call = self._clock()


# Shared by every backfill run in this process
BACKFILL_RATE_LIMITER = RateLimiter()


def _headers():
    return {
        "User-Agent": USER_AGENT,
        "Accept-Language": ACCEPT_LANGUAGE,
    }


def reverse_geocode(latitude, longitude, rate_limiter: Optional[RateLimiter] = None) -> Optional[GeocodeResult]:
    """
    Reverse geocode a coordinate into a normalized Portuguese address.

    Returns None when the provider answers without a usable address (non-success
    status, missing address payload, or a location outside Portugal). Network
    errors and malformed JSON propagate to the caller.
    """
    if rate_limiter is not None:
        rate_limiter.wait()

    params = {
        "format": "jsonv2",
        "lat": latitude,
        "lon": longitude,
        "addressdetails": 1,
    }

    response = requests.get(
        f"{NOMINATIM_URL}/reverse",
        params=params,
        headers=_headers(),
        timeout=REQUEST_TIMEOUT,
    )

    if response.status_code != 200:
        logger.warning(f"Geocoding HTTP error ({response.status_code}) for coordinates ({latitude}, {longitude})")
        return None

    data = response.json()
    if not isinstance(data, dict) or not isinstance(data.get("address"), dict):
        logger.warning(f"No address found for coordinates ({latitude}, {longitude})")
        return None

    result = normalize(data)
    if result is None:
        logger.warning(f"Unusable geocoding result for coordinates ({latitude}, {longitude})")
        return None

    logger.info(f"Successfully geocoded coordinates ({latitude}, {longitude})")
    return result


def bounding_box_zoom(bounding_box) -> int:
    """Pick a map zoom level that fits a Nominatim boundingbox [south, north, west, east]."""
    if not bounding_box or len(bounding_box) < 4:
        return DEFAULT_ZOOM
    try:
        lat_diff = abs(float(bounding_box[1]) - float(bounding_box[0]))
        lng_diff = abs(float(bounding_box[3]) - float(bounding_box[2]))
    except (TypeError, ValueError):
        return DEFAULT_ZOOM

    max_diff = max(lat_diff, lng_diff)
    if max_diff > 5:
        return 7
    if max_diff > 1:
        return 9
    if max_diff > 0.5:
        return 11
    if max_diff > 0.1:
        return 13
    if max_diff > 0.01:
        return 15
    return 16


def search_locations(query) -> List[SearchResult]:
    """Forward search for places in Portugal matching a free-text query."""
    trimmed = (query or "").strip()
    if len(trimmed) < MIN_QUERY_LENGTH:
        return []

    params = {
        "q": trimmed,
        "countrycodes": "pt",
        "format": "json",
        "limit": SEARCH_LIMIT,
        "addressdetails": 0,
    }

    try:
        response = requests.get(
            f"{NOMINATIM_URL}/search",
            params=params,
            headers=_headers(),
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as e:
        raise GeocodingError(f"Location search failed: {e}") from e

    if response.status_code != 200:
        raise GeocodingError(f"Location search failed with HTTP {response.status_code}")

    results = []
    for item in response.json() or []:
        try:
            results.append(SearchResult(
                display_name=item["display_name"],
                lat=float(item["lat"]),
                lng=float(item["lon"]),
                zoom=bounding_box_zoom(item.get("boundingbox")),
            ))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed search result: {e}")

    logger.info(f"Location search for '{trimmed}' returned {len(results)} results")
    return results
