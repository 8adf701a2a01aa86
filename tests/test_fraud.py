"""
Tests for fraud verification
"""
import pytest

from conftest import BONAMOUSSADI, YAOUNDE

from adl.core.exceptions import FraudCheckError
from adl.core.geo_utils import Location
from adl.crowdsource.fraud import (
    SubmissionPhotoMetadata,
    build_photo_fraud_metadata,
    build_submission_fraud_check,
    ensure_within_geofence,
    is_fraud_check_effectively_empty,
    is_photo_metadata_effectively_empty,
    parse_submission_fraud_check,
    resolve_effective_location,
)
from adl.crowdsource.photo_metadata import ExifSource, ExifStatus, ExtractedPhotoMetadata


NEARBY = Location(latitude=4.0880, longitude=9.7398)  # ~60 m from BONAMOUSSADI


def extracted(gps=None, status=ExifStatus.OK):
    return ExtractedPhotoMetadata(
        gps=gps,
        captured_at="2025-03-14T09:26:53.000Z" if gps else None,
        device_make="TECNO" if gps else None,
        device_model=None,
        exif_status=status,
        exif_reason=None,
        exif_source=ExifSource.UPLOAD_BUFFER,
    )


class TestResolveEffectiveLocation:
    """Test suite for location precedence."""

    def test_photo_gps_wins(self):
        """Test photo GPS is used when it agrees with other signals."""
        location = resolve_effective_location(NEARBY, BONAMOUSSADI, BONAMOUSSADI)

        assert location == NEARBY

    def test_photo_gps_alone(self):
        """Test photo GPS without other signals."""
        assert resolve_effective_location(NEARBY, None, None) == NEARBY

    def test_submission_mismatch(self):
        """Test photo GPS far from the device location is rejected."""
        far = Location(latitude=4.1100, longitude=9.7394)  # ~2.5 km

        with pytest.raises(FraudCheckError) as exc_info:
            resolve_effective_location(far, BONAMOUSSADI, None)

        assert exc_info.value.message == "Photo GPS coordinates do not match submission location"
        assert exc_info.value.code == "location_rejected"

    def test_ip_mismatch(self):
        """Test photo GPS far from the IP location is rejected."""
        with pytest.raises(FraudCheckError) as exc_info:
            resolve_effective_location(BONAMOUSSADI, None, YAOUNDE)

        assert exc_info.value.message == "Photo location does not match IP location"

    def test_custom_thresholds(self):
        """Test thresholds come from the caller."""
        far = Location(latitude=4.1100, longitude=9.7394)
        location = resolve_effective_location(far, BONAMOUSSADI, None, submission_threshold_km=5.0)

        assert location == far

    def test_falls_back_to_submission(self):
        """Test device location is used when the photo has no GPS."""
        assert resolve_effective_location(None, BONAMOUSSADI, YAOUNDE) == BONAMOUSSADI

    def test_falls_back_to_ip(self):
        """Test IP location is the last resort."""
        assert resolve_effective_location(None, None, YAOUNDE) == YAOUNDE

    def test_zero_gps_ignored(self):
        """Test a 0/0 photo fix counts as no GPS."""
        zero = Location(latitude=0.0, longitude=0.0)

        assert resolve_effective_location(zero, BONAMOUSSADI, None) == BONAMOUSSADI

    def test_no_signal(self):
        """Test missing GPS everywhere is rejected."""
        with pytest.raises(FraudCheckError) as exc_info:
            resolve_effective_location(None, None, None)

        assert exc_info.value.message == "Photo is missing GPS metadata"

    def test_no_signal_unreadable_photo(self):
        """Test the message distinguishes an unreadable photo."""
        with pytest.raises(FraudCheckError) as exc_info:
            resolve_effective_location(None, None, None, photo_read_failed=True)

        assert exc_info.value.message == "Unable to read photo GPS metadata"


class TestGeofence:
    """Test suite for the contribution geofence."""

    def test_inside(self):
        """Test a location inside passes."""
        ensure_within_geofence(BONAMOUSSADI)

    def test_outside(self):
        """Test a location outside fails with the bounds in the message."""
        with pytest.raises(FraudCheckError) as exc_info:
            ensure_within_geofence(YAOUNDE)

        assert exc_info.value.message.startswith("Location outside Bonamoussadi bounds")
        assert "(4.0755,9.7185)-(4.0999,9.7602)" in exc_info.value.message

    def test_admin_bypass(self):
        """Test admins may submit anywhere."""
        ensure_within_geofence(YAOUNDE, is_admin=True)


class TestPhotoFraudMetadata:
    """Test suite for per-photo fraud reports."""

    def test_distances_and_matches(self):
        """Test distances are computed and compared."""
        report = build_photo_fraud_metadata(extracted(NEARBY), BONAMOUSSADI, YAOUNDE)

        assert report.submission_distance_km == pytest.approx(0.055, abs=0.01)
        assert report.submission_gps_match is True
        assert report.ip_distance_km > 150
        assert report.ip_gps_match is False
        assert report.device_make == "TECNO"

    def test_unavailable_is_not_mismatch(self):
        """Test missing sides leave distance and match as None."""
        report = build_photo_fraud_metadata(extracted(NEARBY), None, None)

        assert report.submission_distance_km is None
        assert report.submission_gps_match is None
        assert report.ip_gps_match is None

    def test_no_extraction(self):
        """Test nothing extracted gives no report."""
        assert build_photo_fraud_metadata(None, BONAMOUSSADI, None) is None

    def test_empty_checks(self):
        """Test emptiness predicates."""
        empty = build_photo_fraud_metadata(extracted(status=ExifStatus.MISSING), BONAMOUSSADI, None)
        full = build_photo_fraud_metadata(extracted(NEARBY), BONAMOUSSADI, None)

        assert is_photo_metadata_effectively_empty(empty)
        assert not is_photo_metadata_effectively_empty(full)
        assert is_fraud_check_effectively_empty(None)
        assert is_fraud_check_effectively_empty(
            build_submission_fraud_check(BONAMOUSSADI, BONAMOUSSADI, None, empty, None)
        )


class TestStoredFraudCheck:
    """Test suite for reading stored fraud checks."""

    def test_round_trip(self):
        """Test a serialized check parses back equal."""
        check = build_submission_fraud_check(
            BONAMOUSSADI,
            NEARBY,
            YAOUNDE,
            build_photo_fraud_metadata(extracted(NEARBY), BONAMOUSSADI, YAOUNDE),
        )

        assert parse_submission_fraud_check(check.to_dict()) == check

    def test_requires_effective_location(self):
        """Test a check without effective location is discarded."""
        assert parse_submission_fraud_check({"submissionLocation": BONAMOUSSADI.to_dict()}) is None
        assert parse_submission_fraud_check("nope") is None

    def test_old_record_defaults(self):
        """Test records predating the EXIF status fields."""
        parsed = parse_submission_fraud_check({
            "effectiveLocation": BONAMOUSSADI.to_dict(),
            "primaryPhoto": {"gps": NEARBY.to_dict(), "deviceMake": "itel"},
            "secondaryPhoto": {},
        })

        assert parsed.submission_match_threshold_km == 1.0
        assert parsed.ip_match_threshold_km == 50.0
        assert parsed.primary_photo.exif_status == ExifStatus.OK
        assert parsed.primary_photo.exif_source == ExifSource.NONE
        assert parsed.secondary_photo.exif_status == ExifStatus.MISSING

    def test_wire_format(self):
        """Test camelCase keys of the photo report."""
        report = SubmissionPhotoMetadata(
            gps=None,
            captured_at=None,
            device_make=None,
            device_model=None,
            submission_distance_km=None,
            submission_gps_match=None,
            ip_distance_km=None,
            ip_gps_match=None,
        )

        assert report.to_dict()["exifStatus"] == "missing"
        assert report.to_dict()["exifSource"] == "none"
        assert set(report.to_dict()) == {
            "gps", "capturedAt", "deviceMake", "deviceModel",
            "submissionDistanceKm", "submissionGpsMatch", "ipDistanceKm",
            "ipGpsMatch", "exifStatus", "exifReason", "exifSource",
        }
