"""
Fraud verification for contributions.

Compares photo GPS against the device-reported and IP-derived locations,
records the outcome as an auditable fraud check, and applies the location
precedence and geofence rules.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from adl.core.exceptions import FraudCheckError
from adl.core.geo_utils import (
    BONAMOUSSADI_BOUNDS,
    Location,
    to_finite,
    haversine_km,
    is_within_bonamoussadi,
    parse_location,
    round_km,
)
from adl.crowdsource.photo_metadata import (
    ExifSource,
    ExifStatus,
    ExtractedPhotoMetadata,
    parse_capture_time,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBMISSION_GPS_MATCH_THRESHOLD_KM = 1.0
DEFAULT_IP_MATCH_THRESHOLD_KM = 50.0


def _location_dict(location: Optional[Location]) -> Optional[Dict[str, float]]:
    return location.to_dict() if location else None


def _optional_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


@dataclass(frozen=True)
class SubmissionPhotoMetadata:
    """Fraud report for one photo of a submission."""
    gps: Optional[Location]
    captured_at: Optional[str]
    device_make: Optional[str]
    device_model: Optional[str]
    submission_distance_km: Optional[float]
    submission_gps_match: Optional[bool]
    ip_distance_km: Optional[float]
    ip_gps_match: Optional[bool]
    exif_status: ExifStatus = ExifStatus.MISSING
    exif_reason: Optional[str] = None
    exif_source: ExifSource = ExifSource.NONE

    @property
    def has_signal(self) -> bool:
        return bool(self.gps or self.captured_at or self.device_make or self.device_model)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "gps": _location_dict(self.gps),
            "capturedAt": self.captured_at,
            "deviceMake": self.device_make,
            "deviceModel": self.device_model,
            "submissionDistanceKm": self.submission_distance_km,
            "submissionGpsMatch": self.submission_gps_match,
            "ipDistanceKm": self.ip_distance_km,
            "ipGpsMatch": self.ip_gps_match,
            "exifStatus": self.exif_status.value,
            "exifReason": self.exif_reason,
            "exifSource": self.exif_source.value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["SubmissionPhotoMetadata"]:
        """
        Tolerantly rebuild a stored photo report.

        Older records may lack the EXIF status fields: the status is then
        inferred from whether any metadata signal is present.
        """
        if not isinstance(data, dict):
            return None

        def _number(key: str) -> Optional[float]:
            return to_finite(data.get(key))

        def _flag(key: str) -> Optional[bool]:
            value = data.get(key)
            return value if isinstance(value, bool) else None

        try:
            source = ExifSource(str(data.get("exifSource", "")).strip().lower())
        except ValueError:
            source = ExifSource.NONE

        parsed = cls(
            gps=parse_location(data.get("gps")),
            captured_at=parse_capture_time(data.get("capturedAt")),
            device_make=_optional_string(data.get("deviceMake")),
            device_model=_optional_string(data.get("deviceModel")),
            submission_distance_km=_number("submissionDistanceKm"),
            submission_gps_match=_flag("submissionGpsMatch"),
            ip_distance_km=_number("ipDistanceKm"),
            ip_gps_match=_flag("ipGpsMatch"),
            exif_reason=_optional_string(data.get("exifReason")),
            exif_source=source,
        )

        try:
            status = ExifStatus(str(data.get("exifStatus", "")).strip().lower())
        except ValueError:
            status = ExifStatus.OK if parsed.has_signal else ExifStatus.MISSING

        return replace(parsed, exif_status=status)


@dataclass(frozen=True)
class SubmissionFraudCheck:
    """Locations, photo reports and thresholds behind a submission decision."""
    submission_location: Optional[Location]
    effective_location: Location
    ip_location: Optional[Location]
    primary_photo: Optional[SubmissionPhotoMetadata]
    secondary_photo: Optional[SubmissionPhotoMetadata]
    submission_match_threshold_km: float = DEFAULT_SUBMISSION_GPS_MATCH_THRESHOLD_KM
    ip_match_threshold_km: float = DEFAULT_IP_MATCH_THRESHOLD_KM

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "submissionLocation": _location_dict(self.submission_location),
            "effectiveLocation": self.effective_location.to_dict(),
            "ipLocation": _location_dict(self.ip_location),
            "primaryPhoto": self.primary_photo.to_dict() if self.primary_photo else None,
            "secondaryPhoto": self.secondary_photo.to_dict() if self.secondary_photo else None,
            "submissionMatchThresholdKm": self.submission_match_threshold_km,
            "ipMatchThresholdKm": self.ip_match_threshold_km,
        }


def build_photo_fraud_metadata(
    extracted: Optional[ExtractedPhotoMetadata],
    submission_location: Optional[Location],
    ip_location: Optional[Location],
    submission_threshold_km: float = DEFAULT_SUBMISSION_GPS_MATCH_THRESHOLD_KM,
    ip_threshold_km: float = DEFAULT_IP_MATCH_THRESHOLD_KM,
) -> Optional[SubmissionPhotoMetadata]:
    """
    Compare a photo's GPS against the submitted and IP-derived locations.

    A distance is None when either side is missing, and so is its match
    flag: "unavailable" is kept distinct from "mismatch".

    Args:
        extracted: Metadata read from the photo
        submission_location: Location reported by the device
        ip_location: Location derived from the request IP
        submission_threshold_km: Maximum photo/device distance
        ip_threshold_km: Maximum photo/IP distance

    Returns:
        SubmissionPhotoMetadata, or None when nothing was extracted
    """
    if extracted is None:
        return None

    gps = extracted.gps
    submission_distance = (
        round_km(haversine_km(submission_location, gps))
        if gps and submission_location else None
    )
    ip_distance = round_km(haversine_km(ip_location, gps)) if gps and ip_location else None

    return SubmissionPhotoMetadata(
        gps=gps,
        captured_at=extracted.captured_at,
        device_make=extracted.device_make,
        device_model=extracted.device_model,
        submission_distance_km=submission_distance,
        submission_gps_match=(
            None if submission_distance is None else submission_distance <= submission_threshold_km
        ),
        ip_distance_km=ip_distance,
        ip_gps_match=None if ip_distance is None else ip_distance <= ip_threshold_km,
        exif_status=extracted.exif_status,
        exif_reason=extracted.exif_reason,
        exif_source=extracted.exif_source,
    )


def build_submission_fraud_check(
    submission_location: Optional[Location],
    effective_location: Location,
    ip_location: Optional[Location],
    primary_photo: Optional[SubmissionPhotoMetadata],
    secondary_photo: Optional[SubmissionPhotoMetadata] = None,
    submission_threshold_km: float = DEFAULT_SUBMISSION_GPS_MATCH_THRESHOLD_KM,
    ip_threshold_km: float = DEFAULT_IP_MATCH_THRESHOLD_KM,
) -> SubmissionFraudCheck:
    return SubmissionFraudCheck(
        submission_location=submission_location,
        effective_location=effective_location,
        ip_location=ip_location,
        primary_photo=primary_photo,
        secondary_photo=secondary_photo,
        submission_match_threshold_km=submission_threshold_km,
        ip_match_threshold_km=ip_threshold_km,
    )


def parse_submission_fraud_check(data: Any) -> Optional[SubmissionFraudCheck]:
    """Rebuild a stored fraud check; None when it has no effective location."""
    if not isinstance(data, dict):
        return None
    effective_location = parse_location(data.get("effectiveLocation"))
    if effective_location is None:
        return None

    submission_threshold = to_finite(data.get("submissionMatchThresholdKm"))
    ip_threshold = to_finite(data.get("ipMatchThresholdKm"))

    return SubmissionFraudCheck(
        submission_location=parse_location(data.get("submissionLocation")),
        effective_location=effective_location,
        ip_location=parse_location(data.get("ipLocation")),
        primary_photo=SubmissionPhotoMetadata.from_dict(data.get("primaryPhoto")),
        secondary_photo=SubmissionPhotoMetadata.from_dict(data.get("secondaryPhoto")),
        submission_match_threshold_km=(
            DEFAULT_SUBMISSION_GPS_MATCH_THRESHOLD_KM
            if submission_threshold is None else submission_threshold
        ),
        ip_match_threshold_km=DEFAULT_IP_MATCH_THRESHOLD_KM if ip_threshold is None else ip_threshold,
    )


def is_photo_metadata_effectively_empty(metadata: Optional[SubmissionPhotoMetadata]) -> bool:
    """True when a photo report holds no metadata and no comparison result."""
    if metadata is None:
        return True
    return all(
        value is None
        for value in (
            metadata.gps,
            metadata.captured_at,
            metadata.device_make,
            metadata.device_model,
            metadata.submission_distance_km,
            metadata.submission_gps_match,
            metadata.ip_distance_km,
            metadata.ip_gps_match,
        )
    )


def is_fraud_check_effectively_empty(fraud_check: Optional[SubmissionFraudCheck]) -> bool:
    if fraud_check is None:
        return True
    return (
        is_photo_metadata_effectively_empty(fraud_check.primary_photo)
        and is_photo_metadata_effectively_empty(fraud_check.secondary_photo)
    )


def _usable_gps(gps: Optional[Location]) -> Optional[Location]:
    # Cameras without a fix commonly write 0/0
    if gps is None or not gps.latitude or not gps.longitude:
        return None
    return gps


def resolve_effective_location(
    photo_gps: Optional[Location],
    submission_location: Optional[Location],
    ip_location: Optional[Location],
    submission_threshold_km: float = DEFAULT_SUBMISSION_GPS_MATCH_THRESHOLD_KM,
    ip_threshold_km: float = DEFAULT_IP_MATCH_THRESHOLD_KM,
    photo_read_failed: bool = False,
) -> Location:
    """
    Decide which location a submission is trusted at.

    Photo GPS wins when present, provided it agrees with the device location
    and the IP-derived location. Otherwise the device location is used, then
    the IP location.

    Raises:
        FraudCheckError: On a GPS mismatch or when no location signal exists
    """
    photo_gps = _usable_gps(photo_gps)

    if photo_gps is not None:
        if submission_location is not None:
            distance = haversine_km(submission_location, photo_gps)
            if distance > submission_threshold_km:
                logger.info(f"Photo GPS {distance:.3f} km from submission location")
                raise FraudCheckError("Photo GPS coordinates do not match submission location")
        if ip_location is not None:
            distance = haversine_km(ip_location, photo_gps)
            if distance > ip_threshold_km:
                logger.info(f"Photo GPS {distance:.3f} km from IP location")
                raise FraudCheckError("Photo location does not match IP location")
        return photo_gps

    if submission_location is None and ip_location is None:
        if photo_read_failed:
            raise FraudCheckError("Unable to read photo GPS metadata")
        raise FraudCheckError("Photo is missing GPS metadata")

    return submission_location or ip_location


def geofence_error_message() -> str:
    bounds = BONAMOUSSADI_BOUNDS
    return (
        f"Location outside Bonamoussadi bounds "
        f"({bounds.south},{bounds.west})-({bounds.north},{bounds.east})"
    )


def ensure_within_geofence(location: Location, is_admin: bool = False) -> None:
    """Reject non-admin submissions outside the Bonamoussadi bounding box."""
    if is_admin:
        return
    if not is_within_bonamoussadi(location):
        raise FraudCheckError(geofence_error_message())
