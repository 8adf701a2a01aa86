"""
ADL Contributions - Crowdsource Module
Point events, validation, projection and fraud verification.
"""

from adl.crowdsource.events import (
    EventType,
    PointEvent,
    ProjectedPoint,
    LegacySubmission,
    UserProfile,
)
from adl.crowdsource.validation import (
    normalize_details_for_category,
    list_missing_fields,
    filter_enrich_details,
    normalize_category,
)
from adl.crowdsource.projection import (
    project_points_from_events,
    project_point_by_id,
    merge_point_events_with_legacy,
)
from adl.crowdsource.photo_metadata import (
    ExtractedPhotoMetadata,
    extract_photo_metadata,
)
from adl.crowdsource.fraud import (
    SubmissionFraudCheck,
    resolve_effective_location,
)
from adl.crowdsource.access import (
    SubmissionAuthContext,
    to_submission_auth_context,
)

__all__ = [
    # Events
    "EventType",
    "PointEvent",
    "ProjectedPoint",
    "LegacySubmission",
    "UserProfile",
    # Validation
    "normalize_details_for_category",
    "list_missing_fields",
    "filter_enrich_details",
    "normalize_category",
    # Projection
    "project_points_from_events",
    "project_point_by_id",
    "merge_point_events_with_legacy",
    # Fraud
    "ExtractedPhotoMetadata",
    "extract_photo_metadata",
    "SubmissionFraudCheck",
    "resolve_effective_location",
    # Access
    "SubmissionAuthContext",
    "to_submission_auth_context",
]
