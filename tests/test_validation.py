"""
Tests for detail normalization and field rules
"""
import pytest

from adl.core.exceptions import ValidationError
from adl.crowdsource.events import EventType
from adl.crowdsource.validation import (
    canonical_field,
    ensure_create_fields,
    filter_enrich_details,
    has_value,
    is_enrich_field_allowed,
    list_create_missing_fields,
    list_missing_fields,
    normalize_boolean,
    normalize_category,
    normalize_details_for_category,
    normalize_enrich_payload,
    normalize_event_type,
    normalize_providers,
)


class TestValueHelpers:
    """Test suite for value predicates and coercions."""

    def test_has_value(self):
        """Test presence rules for detail values."""
        assert has_value(False)
        assert has_value(0)
        assert has_value("x")
        assert has_value(["a"])
        assert not has_value(None)
        assert not has_value("   ")
        assert not has_value([])
        assert not has_value({})
        assert not has_value(float("nan"))

    def test_normalize_boolean(self):
        """Test boolean coercion from strings and numbers."""
        assert normalize_boolean(True) is True
        assert normalize_boolean("Yes") is True
        assert normalize_boolean(" oui ") is True
        assert normalize_boolean("closed") is False
        assert normalize_boolean(0) is False
        assert normalize_boolean(1) is True
        assert normalize_boolean(2) is None
        assert normalize_boolean("maybe") is None

    def test_normalize_providers_dedupes(self):
        """Test provider lists are trimmed and de-duplicated in order."""
        assert normalize_providers([" MTN ", "Orange", "MTN", ""]) == ["MTN", "Orange"]
        assert normalize_providers("Orange") == ["Orange"]
        assert normalize_providers([]) is None


class TestCategoryAndEventType:
    """Test suite for category and event type normalization."""

    def test_canonical_categories(self):
        """Test canonical names pass through."""
        assert normalize_category("pharmacy") == "pharmacy"
        assert normalize_category(" fuel_station ") == "fuel_station"

    def test_legacy_category_aliases(self):
        """Test legacy client category names."""
        assert normalize_category("FUEL") == "fuel_station"
        assert normalize_category("KIOSK") == "mobile_money"
        assert normalize_category("PHARMACY") == "pharmacy"

    def test_unknown_category(self):
        """Test unknown categories are rejected."""
        assert normalize_category("bakery") is None
        assert normalize_category(None) is None

    def test_event_type(self):
        """Test event type aliases and default."""
        assert normalize_event_type("ENRICH_EVENT") == EventType.ENRICH
        assert normalize_event_type("enrich") == EventType.ENRICH
        assert normalize_event_type(None) == EventType.CREATE
        assert normalize_event_type("DELETE") == EventType.CREATE


class TestNormalizeDetails:
    """Test suite for per-category normalization."""

    def test_name_mirrors_site_name(self):
        """Test name and siteName are kept in sync."""
        details = normalize_details_for_category("pharmacy", {"siteName": "  Pharmacie Akwa "})

        assert details["name"] == "Pharmacie Akwa"
        assert details["siteName"] == "Pharmacie Akwa"

    def test_opening_hours_aliases(self):
        """Test legacy hours keys fold into openingHours."""
        details = normalize_details_for_category("pharmacy", {"hours": "08:00-20:00"})

        assert details["openingHours"] == "08:00-20:00"
        assert "hours" not in details

    def test_pharmacy_availability_text(self):
        """Test open state derived from free-text availability."""
        closed = normalize_details_for_category("pharmacy", {"availability": "Closed today"})
        on_call = normalize_details_for_category("pharmacy", {"availability": "Pharmacie de garde"})

        assert closed["isOpenNow"] is False
        assert on_call["isOpenNow"] is True
        assert on_call["isOnDuty"] is True

    def test_pharmacy_on_duty_alias(self):
        """Test on-duty aliases map to isOnDuty."""
        details = normalize_details_for_category("pharmacy", {"pharmacyDeGarde": "oui"})

        assert details["isOnDuty"] is True
        assert "pharmacyDeGarde" not in details

    def test_explicit_boolean_wins_over_availability(self):
        """Test explicit isOpenNow is not overridden by text."""
        details = normalize_details_for_category(
            "pharmacy", {"isOpenNow": True, "availability": "closed"}
        )

        assert details["isOpenNow"] is True

    def test_mobile_money_providers_and_merchant(self):
        """Test providers list and merchant id mapping."""
        details = normalize_details_for_category(
            "mobile_money", {"provider": "MTN", "merchantId": " 12345 "}
        )

        assert details["providers"] == ["MTN"]
        assert details["merchantIdByProvider"] == {"MTN": "12345"}

    def test_mobile_money_cash_alias(self):
        """Test hasCashAvailable folds into the canonical cash flag."""
        details = normalize_details_for_category(
            "mobile_money", {"providers": ["Orange"], "hasCashAvailable": "no"}
        )

        assert details["hasMin50000XafAvailable"] is False
        assert "hasCashAvailable" not in details

    def test_fuel_price_builds_prices_by_fuel(self):
        """Test a single price lands in pricesByFuel under its fuel type."""
        details = normalize_details_for_category(
            "fuel_station", {"fuelType": "diesel", "price": 750}
        )

        assert details["fuelTypes"] == ["diesel"]
        assert details["pricesByFuel"] == {"diesel": 750}
        assert details["fuelPrice"] == 750

    def test_fuel_price_default_key(self):
        """Test a price without fuel type uses the default key."""
        details = normalize_details_for_category("fuel_station", {"fuelPrice": 840})

        assert details["pricesByFuel"] == {"super": 840}

    def test_fuel_availability_text(self):
        """Test fuel availability derived from text."""
        details = normalize_details_for_category("fuel_station", {"availability": "Out of stock"})

        assert details["hasFuelAvailable"] is False

    def test_unknown_fields_dropped(self):
        """Test fields outside the category variant do not survive."""
        details = normalize_details_for_category(
            "pharmacy", {"name": "A", "fuelTypes": ["diesel"], "random": 1}
        )

        assert "fuelTypes" not in details
        assert "random" not in details

    def test_invalid_field_dropped_not_fatal(self):
        """Test a malformed value only drops its own field."""
        details = normalize_details_for_category(
            "fuel_station", {"name": "Total", "pricesByFuel": "cheap"}
        )

        assert details["name"] == "Total"
        assert "pricesByFuel" not in details

    def test_idempotent(self):
        """Test normalizing twice gives the same bag."""
        raw = {
            "provider": "MTN",
            "merchantId": "777",
            "hours": "24/7",
            "availability": "available",
            "source": "osm",
        }
        once = normalize_details_for_category("mobile_money", raw)
        twice = normalize_details_for_category("mobile_money", once)

        assert once == twice

    def test_input_not_mutated(self):
        """Test the submitted mapping is left untouched."""
        raw = {"hours": "08:00-18:00", "availability": "open"}
        normalize_details_for_category("pharmacy", raw)

        assert raw == {"hours": "08:00-18:00", "availability": "open"}


class TestFieldRules:
    """Test suite for required fields, gaps and enrich filtering."""

    def test_create_missing_fields(self):
        """Test required CREATE fields per category."""
        assert list_create_missing_fields("pharmacy", {"name": "A"}) == ["isOpenNow"]
        assert list_create_missing_fields("pharmacy", {"name": "A", "isOpenNow": False}) == []
        assert list_create_missing_fields("mobile_money", {}) == ["providers"]

    def test_ensure_create_fields_message(self):
        """Test the error names every missing field."""
        with pytest.raises(ValidationError) as exc_info:
            ensure_create_fields("fuel_station", {})

        assert exc_info.value.message == "Missing required fields: name, hasFuelAvailable"
        assert exc_info.value.status_code == 400

    def test_gaps(self):
        """Test gaps are the enrichable fields without a value."""
        gaps = list_missing_fields("pharmacy", {"name": "A", "isOpenNow": True})

        assert gaps == ["openingHours", "isOnDuty"]

    def test_canonical_field(self):
        """Test legacy field names map to canonical ones."""
        assert canonical_field("hours") == "openingHours"
        assert canonical_field("hasCashAvailable") == "hasMin50000XafAvailable"
        assert canonical_field("pharmacyDeGarde") == "isOnDuty"
        assert canonical_field("name") == "name"

    def test_normalize_enrich_payload(self):
        """Test enrich payloads fold legacy keys."""
        normalized = normalize_enrich_payload("pharmacy", {"hours": " 24/7 ", "onDuty": "yes"})

        assert normalized["openingHours"] == "24/7"
        assert normalized["isOnDuty"] is True
        assert "hours" not in normalized

    def test_enrich_field_allowed_through_alias(self):
        """Test alias names resolve before the allow check."""
        assert is_enrich_field_allowed("pharmacy", "hours")
        assert not is_enrich_field_allowed("pharmacy", "name")

    def test_filter_enrich_keeps_only_gaps(self):
        """Test enrich payloads are reduced to open gaps."""
        filtered = filter_enrich_details(
            "pharmacy",
            {"openingHours": "08:00-20:00", "isOpenNow": False, "name": "B"},
            gaps=["openingHours", "isOnDuty"],
        )

        assert filtered == {"openingHours": "08:00-20:00"}

    def test_filter_enrich_nothing_left(self):
        """Test an enrich without any open gap is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            filter_enrich_details("pharmacy", {"name": "B"}, gaps=["openingHours"])

        assert "at least one currently missing field" in exc_info.value.message
