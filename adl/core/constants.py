"""
ADL Contributions - Constants and Reference Data
Static values used throughout the application.
"""

from typing import Dict, FrozenSet, Tuple

# =============================================================================
# GEOGRAPHIC BOUNDARIES
# =============================================================================

# Bonamoussadi (Douala) bounding box (west, south, east, north)
BONAMOUSSADI_BBOX: Tuple[float, float, float, float] = (9.7185, 4.0755, 9.7602, 4.0999)

# Bonamoussadi center coordinates (latitude, longitude)
BONAMOUSSADI_CENTER: Tuple[float, float] = (4.0877, 9.7394)

# Cameroon bounding box (west, south, east, north)
CAMEROON_BBOX: Tuple[float, float, float, float] = (8.4947, 1.6523, 16.1921, 13.0833)

MAP_SCOPES: Tuple[str, ...] = ("bonamoussadi", "cameroon", "global")
DEFAULT_MAP_SCOPE = "bonamoussadi"

# =============================================================================
# CATEGORIES AND EVENTS
# =============================================================================

CATEGORIES: Tuple[str, ...] = ("pharmacy", "fuel_station", "mobile_money")

# Legacy client category names
CATEGORY_ALIASES: Dict[str, str] = {
    "FUEL": "fuel_station",
    "MOBILE_MONEY": "mobile_money",
    "KIOSK": "mobile_money",
    "PHARMACY": "pharmacy",
}

EVENT_TYPE_ALIASES: Dict[str, str] = {
    "CREATE": "CREATE_EVENT",
    "ENRICH": "ENRICH_EVENT",
}

# =============================================================================
# FIELD RULES
# =============================================================================

# Fields a point may still be missing ("gaps"), per category
ENRICHABLE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "pharmacy": ("openingHours", "isOpenNow", "isOnDuty"),
    "mobile_money": ("merchantIdByProvider", "paymentMethods", "openingHours", "providers"),
    "fuel_station": (
        "fuelTypes",
        "pricesByFuel",
        "quality",
        "paymentMethods",
        "openingHours",
        "hasFuelAvailable",
    ),
}

CREATE_REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
    "pharmacy": ("name", "isOpenNow"),
    "mobile_money": ("providers",),
    "fuel_station": ("name", "hasFuelAvailable"),
}

# Legacy/alias field names folded into canonical keys
FIELD_ALIASES: Dict[str, str] = {
    "hours": "openingHours",
    "opening_hours": "openingHours",
    "merchantId": "merchantIdByProvider",
    "hasCashAvailable": "hasMin50000XafAvailable",
    "isOnCall": "isOnDuty",
    "onDuty": "isOnDuty",
    "pharmacyDeGarde": "isOnDuty",
}

# Provenance keys allowed on every category's details
PROVENANCE_FIELDS: FrozenSet[str] = frozenset({"source", "externalId", "isImported"})

DEFAULT_FUEL_PRICE_KEY = "super"

TRUTHY_STRINGS: FrozenSet[str] = frozenset({"true", "yes", "y", "1", "open", "available", "oui"})
FALSY_STRINGS: FrozenSet[str] = frozenset({"false", "no", "n", "0", "closed", "unavailable", "non"})

# =============================================================================
# SUBMISSION PAYLOADS
# =============================================================================

ALLOWED_IMAGE_MIME: FrozenSet[str] = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/heic",
    "image/heif",
})

IMAGE_EXTENSIONS: Dict[str, str] = {
    "image/png": "png",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
}

# =============================================================================
# OFFLINE SYNC
# =============================================================================

RETRY_BASE_DELAY_MS: int = 1000
RETRY_MAX_DELAY_MS: int = 30_000
RETRY_JITTER_MS: int = 1000

RETRYABLE_HTTP_STATUSES: FrozenSet[int] = frozenset({408, 425, 429})

DEFAULT_SYNC_ERROR = "Unable to sync submission right now."
MAX_SYNC_ERROR_LENGTH = 280
