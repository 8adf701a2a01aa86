"""
Typed per-category detail variants.

Each category accepts a closed set of fields; provenance fields are the
only keys shared by every variant beyond the common descriptive ones.
Events and projections carry the camelCase "bag" produced by ``to_bag``.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class BaseDetails(BaseModel):
    """Fields every category may carry."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    name: Optional[str] = None
    site_name: Optional[str] = None
    opening_hours: Optional[str] = None
    payment_methods: Optional[List[str]] = None

    # Photo evidence
    has_photo: Optional[bool] = None
    second_photo_url: Optional[str] = None
    has_secondary_photo: Optional[bool] = None
    fraud_check: Optional[Dict[str, Any]] = None

    # Provenance for imported data
    source: Optional[str] = None
    external_id: Optional[str] = None
    is_imported: Optional[bool] = None

    def to_bag(self) -> Dict[str, Any]:
        """Dump to the camelCase wire form, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PharmacyDetails(BaseDetails):
    is_open_now: Optional[bool] = None
    is_on_duty: Optional[bool] = None


class FuelStationDetails(BaseDetails):
    has_fuel_available: Optional[bool] = None
    fuel_type: Optional[str] = None
    fuel_types: Optional[List[str]] = None
    fuel_price: Optional[float] = None
    price: Optional[float] = None
    prices_by_fuel: Optional[Dict[str, float]] = None
    quality: Optional[str] = None


class MobileMoneyDetails(BaseDetails):
    provider: Optional[str] = None
    providers: Optional[List[str]] = None
    merchant_id: Optional[str] = None
    merchant_id_by_provider: Optional[Dict[str, str]] = None
    has_min_50000_xaf_available: Optional[bool] = Field(
        default=None, alias="hasMin50000XafAvailable"
    )


DETAILS_MODELS: Dict[str, Type[BaseDetails]] = {
    "pharmacy": PharmacyDetails,
    "fuel_station": FuelStationDetails,
    "mobile_money": MobileMoneyDetails,
}


def details_model_for(category: str) -> Type[BaseDetails]:
    """Variant model for a category."""
    try:
        return DETAILS_MODELS[category]
    except KeyError:
        raise ValueError(f"Unknown category: {category}") from None


def coerce_details(category: str, data: Dict[str, Any]) -> BaseDetails:
    """
    Validate a details mapping into its category variant.

    Fields whose values do not fit the variant are dropped instead of
    failing the whole record.
    """
    model = details_model_for(category)
    remaining = dict(data)
    for _ in range(len(remaining) + 1):
        try:
            return model.model_validate(remaining)
        except PydanticValidationError as e:
            invalid = {err["loc"][0] for err in e.errors() if err.get("loc")}
            dropped = invalid & set(remaining)
            if not dropped:
                raise
            logger.warning(
                f"Dropping invalid {category} detail fields: {sorted(dropped)}"
            )
            remaining = {k: v for k, v in remaining.items() if k not in dropped}
    return model()


def to_details_bag(category: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a mapping and dump it back to the bag form."""
    return coerce_details(category, data).to_bag()
