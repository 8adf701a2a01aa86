"""
ADL Contributions - Core Utilities
Central configuration, logging, errors and geospatial helpers.
"""

from adl.core.config import settings
from adl.core.constants import (
    BONAMOUSSADI_BBOX,
    CAMEROON_BBOX,
    CATEGORIES,
    ENRICHABLE_FIELDS,
    CREATE_REQUIRED_FIELDS,
    FIELD_ALIASES,
)
from adl.core.geo_utils import (
    Location,
    BoundingBox,
    haversine_km,
    round_km,
    parse_location,
    is_within_bonamoussadi,
    is_within_cameroon,
)

__all__ = [
    "settings",
    "BONAMOUSSADI_BBOX",
    "CAMEROON_BBOX",
    "CATEGORIES",
    "ENRICHABLE_FIELDS",
    "CREATE_REQUIRED_FIELDS",
    "FIELD_ALIASES",
    "Location",
    "BoundingBox",
    "haversine_km",
    "round_km",
    "parse_location",
    "is_within_bonamoussadi",
    "is_within_cameroon",
]
