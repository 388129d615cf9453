"""
Geocoding Module
--------------
Validates coordinates against Portuguese territory and converts them to normalized addresses.
Uses OpenStreetMap's Nominatim API with rate limiting for batch processing.
"""
from roadwatch.geocoding.territory import is_within_territory, PORTUGAL_TERRITORY_BOUNDS
from roadwatch.geocoding.normalizer import normalize
from roadwatch.geocoding.nominatim import (
    GeocodingError,
    RateLimiter,
    reverse_geocode,
    search_locations,
)
