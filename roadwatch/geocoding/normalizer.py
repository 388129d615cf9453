import logging
from typing import Optional, Dict, Any

from roadwatch.models.pothole import GeocodeResult

logger = logging.getLogger(__name__)

PORTUGAL_COUNTRY_CODE = "pt"

# Nominatim address components, highest priority first
ROAD_KEYS = ("road", "pedestrian", "footway", "path", "cycleway")
HOUSE_NUMBER_KEYS = ("house_number",)
PARISH_KEYS = ("suburb", "city_district", "neighbourhood", "quarter", "hamlet")
MUNICIPALITY_KEYS = ("city", "town", "village", "municipality", "county")
DISTRICT_KEYS = ("state_district", "state", "county")
POSTAL_CODE_KEYS = ("postcode",)


def pick_first(components, keys):
    """Return the first non-empty, trimmed string among components[key] for key in keys."""
    for key in keys:
        value = components.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _join(separator, *parts):
    return separator.join(part for part in parts if part)


def normalize(provider_response: Dict[str, Any]) -> Optional[GeocodeResult]:
    """
    Build a GeocodeResult from a Nominatim reverse geocoding response.

    Returns None when the response has no display_name or when it resolves
    to a country other than Portugal. A response without address components
    still yields a result whose normalized address is the display name.
    """
    if not isinstance(provider_response, dict):
        return None

    display_name = provider_response.get("display_name")
    if not isinstance(display_name, str) or not display_name.strip():
        return None

    components = provider_response.get("address")
    if not isinstance(components, dict):
        components = {}

    country_code = str(components.get("country_code") or "").strip().lower()
    if country_code and country_code != PORTUGAL_COUNTRY_CODE:
        logger.debug(f"Discarding geocoding result outside Portugal (country_code={country_code})")
        return None

    road = pick_first(components, ROAD_KEYS)
    house_number = pick_first(components, HOUSE_NUMBER_KEYS)
    municipality = pick_first(components, MUNICIPALITY_KEYS)
    parish = pick_first(components, PARISH_KEYS) or municipality
    district = pick_first(components, DISTRICT_KEYS)
    postal_code = pick_first(components, POSTAL_CODE_KEYS)

    street_line = _join(", ", road, house_number)
    postal_line = _join(" ", postal_code, municipality)
    normalized_address = _join(", ", street_line, parish, postal_line, district)

    return GeocodeResult(
        display_address=display_name,
        normalized_address=normalized_address or display_name,
        parish=parish,
        municipality=municipality,
        district=district,
        postal_code=postal_code,
    )
