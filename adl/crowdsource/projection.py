"""
Point projection engine.

Folds the append-only event stream into the current state of each point.
Projection is a pure function of the events: inputs are never mutated and
replaying the same events always gives equal output.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

from adl.core.geo_utils import Location, haversine_km
from adl.crowdsource.events import (
    EventType,
    LegacySubmission,
    PointEvent,
    ProjectedPoint,
    timestamp_sort_key,
)
from adl.crowdsource.validation import (
    has_value,
    list_missing_fields,
    normalize_details_for_category,
)

logger = logging.getLogger(__name__)

LEGACY_EVENT_PREFIX = "legacy-event-"
LEGACY_SOURCE = "legacy_submission"


def merge_details(base: Dict[str, Any], incoming: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge an event's details onto the accumulated details.

    Values without content are skipped. Scalars and lists overwrite; when
    both sides hold a mapping the two are merged shallowly.
    """
    merged = dict(base)
    for key, value in incoming.items():
        if not has_value(value):
            continue
        previous = merged.get(key)
        if isinstance(value, dict) and isinstance(previous, dict):
            merged[key] = {**previous, **copy.deepcopy(value)}
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def event_to_projected_point(event: PointEvent) -> ProjectedPoint:
    """Projection of a point that has seen a single event."""
    details = normalize_details_for_category(event.category, event.details)
    return ProjectedPoint(
        point_id=event.point_id,
        category=event.category,
        location=event.location,
        details=details,
        created_at=event.created_at,
        updated_at=event.created_at,
        gaps=list_missing_fields(event.category, details),
        events_count=1,
        event_ids=[event.id],
        photo_url=event.photo_url,
        source=event.source,
        external_id=event.external_id,
    )


def _apply_event(point: ProjectedPoint, event: PointEvent) -> None:
    details = normalize_details_for_category(event.category, event.details)
    point.category = event.category
    point.location = event.location or point.location
    point.details = merge_details(point.details, details)
    point.updated_at = event.created_at
    point.events_count += 1
    point.event_ids.append(event.id)
    if event.photo_url:
        point.photo_url = event.photo_url
    if event.source:
        point.source = event.source
    if event.external_id:
        point.external_id = event.external_id
    point.gaps = list_missing_fields(point.category, point.details)


def project_points_from_events(events: Iterable[PointEvent]) -> List[ProjectedPoint]:
    """
    Fold events into one projected point per pointId.

    Events are applied in createdAt order (ties keep their input order).
    The first event of a point seeds it; each later one overwrites category
    and location, merges details per field and refreshes the gaps.

    Args:
        events: Point events in any order

    Returns:
        Projected points, most recently updated first
    """
    ordered = sorted(events, key=lambda event: timestamp_sort_key(event.created_at))
    points: Dict[str, ProjectedPoint] = {}

    for event in ordered:
        existing = points.get(event.point_id)
        if existing is None:
            points[event.point_id] = event_to_projected_point(event)
        else:
            _apply_event(existing, event)

    return sorted(
        points.values(),
        key=lambda point: timestamp_sort_key(point.updated_at),
        reverse=True,
    )


def project_point_by_id(events: Iterable[PointEvent], point_id: str) -> Optional[ProjectedPoint]:
    relevant = [event for event in events if event.point_id == point_id]
    if not relevant:
        return None
    return project_points_from_events(relevant)[0]


def legacy_submission_to_create_event(submission: LegacySubmission) -> PointEvent:
    """Represent a pre-event-sourcing submission as a synthetic CREATE event."""
    details = normalize_details_for_category(submission.category, submission.details)
    source = details.get("source")
    external_id = details.get("externalId")
    return PointEvent(
        id=f"{LEGACY_EVENT_PREFIX}{submission.id}",
        point_id=submission.id,
        event_type=EventType.CREATE,
        user_id=submission.user_id,
        category=submission.category,
        location=submission.location,
        details=details,
        created_at=submission.created_at,
        photo_url=submission.photo_url,
        source=source.strip() if isinstance(source, str) and source.strip() else LEGACY_SOURCE,
        external_id=(
            external_id.strip() if isinstance(external_id, str) and external_id.strip()
            else f"legacy:{submission.id}"
        ),
    )


def merge_point_events_with_legacy(
    events: Iterable[PointEvent],
    legacy_submissions: Iterable[LegacySubmission],
) -> List[PointEvent]:
    """Append converted legacy submissions whose event id is not already present."""
    merged = list(events)
    seen = {event.id for event in merged}
    for legacy in legacy_submissions:
        converted = legacy_submission_to_create_event(legacy)
        if converted.id in seen:
            continue
        merged.append(converted)
        seen.add(converted.id)
    return merged


def filter_points_within_radius(
    points: Iterable[ProjectedPoint],
    center: Location,
    radius_km: float,
) -> List[ProjectedPoint]:
    """Points whose location lies within radius_km of center."""
    return [point for point in points if haversine_km(point.location, center) <= radius_km]
