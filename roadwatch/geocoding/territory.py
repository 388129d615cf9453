from typing import NamedTuple


class TerritoryBounds(NamedTuple):
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat, lng):
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


# Portugal is split across three disjoint regions
MAINLAND_BOUNDS = TerritoryBounds(36.8, 42.2, -9.7, -6.0)
MADEIRA_BOUNDS = TerritoryBounds(32.2, 33.3, -17.6, -16.0)
AZORES_BOUNDS = TerritoryBounds(36.5, 39.9, -31.9, -24.0)

PORTUGAL_TERRITORY_BOUNDS = [
    MAINLAND_BOUNDS,
    MADEIRA_BOUNDS,
    AZORES_BOUNDS,
]


def is_within_territory(lat, lng):
    """Return True if (lat, lng) falls inside any Portuguese bounding box, bounds inclusive."""
    return any(bounds.contains(lat, lng) for bounds in PORTUGAL_TERRITORY_BOUNDS)
