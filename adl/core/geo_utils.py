"""
ADL Contributions - Geospatial Utilities
Distances, bounding boxes and location parsing.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from adl.core.constants import BONAMOUSSADI_BBOX, CAMEROON_BBOX

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

# Decimal places kept when a distance is persisted
KM_PRECISION = 3


@dataclass(frozen=True)
class Location:
    """Geographic point with latitude and longitude."""
    latitude: float
    longitude: float

    def to_tuple(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class BoundingBox:
    """Geographic bounding box."""
    west: float   # min longitude
    south: float  # min latitude
    east: float   # max longitude
    north: float  # max latitude

    def contains(self, point: Optional[Location]) -> bool:
        """Check if a point is within the bounding box (edges inclusive)."""
        if point is None:
            return False
        return (
            self.west <= point.longitude <= self.east and
            self.south <= point.latitude <= self.north
        )

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)

    @property
    def center(self) -> Location:
        """Get the center point of the bounding box."""
        return Location(
            latitude=(self.south + self.north) / 2,
            longitude=(self.west + self.east) / 2
        )


BONAMOUSSADI_BOUNDS = BoundingBox(*BONAMOUSSADI_BBOX)
CAMEROON_BOUNDS = BoundingBox(*CAMEROON_BBOX)


def to_finite(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def parse_location(value: Any) -> Optional[Location]:
    """
    Parse a location from a mapping or Location.

    Numeric strings are accepted; anything non-finite yields None.
    """
    if isinstance(value, Location):
        return value
    if not isinstance(value, dict):
        return None
    latitude = to_finite(value.get("latitude"))
    longitude = to_finite(value.get("longitude"))
    if latitude is None or longitude is None:
        return None
    return Location(latitude=latitude, longitude=longitude)


def haversine_km(a: Location, b: Location) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        a: First point
        b: Second point

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(a.latitude)
    lat2_rad = math.radians(b.latitude)
    delta_lat = math.radians(b.latitude - a.latitude)
    delta_lon = math.radians(b.longitude - a.longitude)

    # Haversine formula
    h = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def round_km(distance_km: float) -> float:
    """Round a distance for persistence."""
    return round(distance_km, KM_PRECISION)


def is_within_bonamoussadi(location: Optional[Location]) -> bool:
    return BONAMOUSSADI_BOUNDS.contains(location)


def is_within_cameroon(location: Optional[Location]) -> bool:
    return CAMEROON_BOUNDS.contains(location)


def is_within_scope(location: Optional[Location], scope: str) -> bool:
    """Check a location against a map scope name."""
    if scope == "global":
        return location is not None
    if scope == "cameroon":
        return is_within_cameroon(location)
    return is_within_bonamoussadi(location)
