"""
Event validation and normalization for point contributions.
Folds legacy/alias keys into canonical fields and applies per-category rules.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from adl.core.constants import (
    CATEGORIES,
    CATEGORY_ALIASES,
    CREATE_REQUIRED_FIELDS,
    DEFAULT_FUEL_PRICE_KEY,
    ENRICHABLE_FIELDS,
    EVENT_TYPE_ALIASES,
    FALSY_STRINGS,
    FIELD_ALIASES,
    TRUTHY_STRINGS,
)
from adl.core.exceptions import ValidationError
from adl.crowdsource.details import to_details_bag
from adl.crowdsource.events import EventType

logger = logging.getLogger(__name__)

# Keys checked, in order, for the pharmacy on-duty flag
ON_DUTY_KEYS = tuple(
    ["isOnDuty"] + [alias for alias, target in FIELD_ALIASES.items() if target == "isOnDuty"]
)

# Keys checked, in order, for opening hours
OPENING_HOURS_KEYS = ("opening_hours", "openingHours", "hours")

ON_CALL_MARKERS = ("on-call", "on call", "garde")


def has_value(value: Any) -> bool:
    """
    Check whether a detail value counts as present.

    Blank strings and empty collections are absent; booleans are always
    present, including False.
    """
    if isinstance(value, bool):
        return True
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return False


def _trim(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def normalize_boolean(value: Any) -> Optional[bool]:
    """Interpret booleans, 0/1 and yes/no style strings; anything else is None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    if normalized in TRUTHY_STRINGS:
        return True
    if normalized in FALSY_STRINGS:
        return False
    return None


def normalize_providers(value: Any) -> Optional[List[str]]:
    """Trimmed, de-duplicated provider list (first occurrence wins)."""
    if isinstance(value, (list, tuple)):
        providers: List[str] = []
        for item in value:
            trimmed = _trim(item)
            if trimmed and trimmed not in providers:
                providers.append(trimmed)
        return providers or None
    single = _trim(value)
    return [single] if single else None


def _first_present(details: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if details.get(key) is not None:
            return details[key]
    return None


def _normalize_mobile_money(details: Dict[str, Any]) -> None:
    providers = normalize_providers(
        details["providers"] if details.get("providers") is not None else details.get("provider")
    )
    if providers:
        details["providers"] = providers

    availability = details.get("availability")
    has_cash = normalize_boolean(details.get("hasMin50000XafAvailable"))
    if has_cash is None:
        has_cash = normalize_boolean(details.get("hasCashAvailable"))
    if has_cash is None and isinstance(availability, str):
        has_cash = "out" not in availability.lower()
    if has_cash is not None:
        details["hasMin50000XafAvailable"] = has_cash
    details.pop("hasCashAvailable", None)

    merchant_id = details.get("merchantId")
    if merchant_id and providers and not details.get("merchantIdByProvider"):
        details["merchantIdByProvider"] = {providers[0]: str(merchant_id).strip()}


def _normalize_fuel_station(details: Dict[str, Any]) -> None:
    fuel_type = _trim(details.get("fuelType"))
    if fuel_type and not details.get("fuelTypes"):
        details["fuelTypes"] = [fuel_type]

    availability = details.get("availability")
    if not isinstance(details.get("hasFuelAvailable"), bool) and isinstance(availability, str):
        details["hasFuelAvailable"] = "out" not in availability.lower()

    price = _number(details.get("fuelPrice"))
    if price is None:
        price = _number(details.get("price"))
    if price is not None:
        existing = details.get("pricesByFuel")
        prices = dict(existing) if isinstance(existing, dict) else {}
        prices[fuel_type or DEFAULT_FUEL_PRICE_KEY] = price
        details["pricesByFuel"] = prices
        details["fuelPrice"] = price
        details["price"] = price


def _normalize_pharmacy(details: Dict[str, Any]) -> None:
    availability = details.get("availability")
    text = availability.lower() if isinstance(availability, str) else None

    if not isinstance(details.get("isOpenNow"), bool) and text is not None:
        details["isOpenNow"] = "out" not in text and "closed" not in text

    on_duty = normalize_boolean(_first_present(details, ON_DUTY_KEYS))
    if on_duty is not None:
        details["isOnDuty"] = on_duty

    if not isinstance(details.get("isOnDuty"), bool) and text is not None:
        if any(marker in text for marker in ON_CALL_MARKERS):
            details["isOnDuty"] = True


def normalize_details_for_category(category: str, raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Normalize a raw details mapping into the category's canonical bag.

    Legacy keys are folded into their canonical names, booleans are derived
    from free-text availability when no explicit value exists, and derived
    structures (providers list, per-fuel prices, merchant ids by provider)
    are built. The result is validated against the category variant, so
    unknown keys do not survive. Applying it twice gives the same result.

    Args:
        category: Canonical category name
        raw: Submitted details (not modified)

    Returns:
        Canonical details bag
    """
    details: Dict[str, Any] = dict(raw or {})

    name = _trim(details.get("name")) or _trim(details.get("siteName"))
    if name:
        details["name"] = name
        details["siteName"] = name

    opening_hours = None
    for key in OPENING_HOURS_KEYS:
        opening_hours = _trim(details.get(key))
        if opening_hours:
            break
    if opening_hours:
        details["openingHours"] = opening_hours

    if category == "mobile_money":
        _normalize_mobile_money(details)
    elif category == "fuel_station":
        _normalize_fuel_station(details)
    elif category == "pharmacy":
        _normalize_pharmacy(details)

    return to_details_bag(category, details)


def list_missing_fields(category: str, details: Dict[str, Any]) -> List[str]:
    """Enrichable fields of the category that have no value yet (the gaps)."""
    normalized = normalize_details_for_category(category, details)
    return [field for field in ENRICHABLE_FIELDS[category] if not has_value(normalized.get(field))]


def list_create_missing_fields(category: str, details: Dict[str, Any]) -> List[str]:
    """Fields a CREATE event must carry but does not."""
    normalized = normalize_details_for_category(category, details)
    return [
        field for field in CREATE_REQUIRED_FIELDS[category]
        if not has_value(normalized.get(field))
    ]


def ensure_create_fields(category: str, details: Dict[str, Any]) -> None:
    """Raise ValidationError when a CREATE payload lacks required fields."""
    missing = list_create_missing_fields(category, details)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def canonical_field(field: str) -> str:
    """Canonical name for a possibly-legacy field name."""
    return FIELD_ALIASES.get(field, field)


def is_enrich_field_allowed(category: str, field: str) -> bool:
    return canonical_field(field) in ENRICHABLE_FIELDS.get(category, ())


def normalize_enrich_payload(category: str, details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalize submitted details (CREATE or ENRICH) for a category."""
    return normalize_details_for_category(category, details)


def filter_enrich_details(
    category: str,
    details: Dict[str, Any],
    gaps: Iterable[str],
) -> Dict[str, Any]:
    """
    Keep only the fields an ENRICH event may contribute.

    A field survives when it carries a value, is enrichable for the
    category and is currently a gap on the target point.

    Raises:
        ValidationError: If nothing survives
    """
    open_gaps = set(gaps)
    filtered = {}
    for field, value in details.items():
        if not has_value(value):
            continue
        canonical = canonical_field(field)
        if is_enrich_field_allowed(category, canonical) and canonical in open_gaps:
            filtered[field] = value

    if not filtered:
        raise ValidationError("ENRICH_EVENT must include at least one currently missing field")

    dropped = sorted(set(details) - set(filtered))
    if dropped:
        logger.debug(f"Enrich payload for {category} dropped fields: {dropped}")
    return filtered


def normalize_category(raw: Any) -> Optional[str]:
    """Canonical category for a submitted value, or None when unknown."""
    if not isinstance(raw, str):
        return None
    value = raw.strip()
    if value in CATEGORIES:
        return value
    return CATEGORY_ALIASES.get(value)


def normalize_event_type(raw: Any) -> EventType:
    """Event type for a submitted value; anything unrecognised is a CREATE."""
    if isinstance(raw, EventType):
        return raw
    if isinstance(raw, str):
        value = raw.strip().upper()
        value = EVENT_TYPE_ALIASES.get(value, value)
        try:
            return EventType(value)
        except ValueError:
            pass
    return EventType.CREATE
