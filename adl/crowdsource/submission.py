"""
Submission pipeline for point contributions.

Validates a submission, checks its location evidence, stores its photos and
appends a new immutable point event. Also serves the read views over the
event stream.
"""

import asyncio
import base64
import binascii
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from adl.core.config import Settings, settings as default_settings
from adl.core.constants import ALLOWED_IMAGE_MIME, DEFAULT_MAP_SCOPE, IMAGE_EXTENSIONS, MAP_SCOPES
from adl.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    PhotoStorageError,
    SubmissionError,
    ValidationError,
)
from adl.core.geo_utils import Location, is_within_scope, parse_location
from adl.crowdsource.access import (
    AdminViewAccess,
    SubmissionAuthContext,
    can_view_event_detail,
    filter_events_for_viewer,
    normalize_actor_id,
    redact_event_user_ids,
    resolve_admin_view_access,
)
from adl.crowdsource.events import EventType, PointEvent, ProjectedPoint, utc_now_iso
from adl.crowdsource.forensics import ForensicsService
from adl.crowdsource.fraud import (
    build_photo_fraud_metadata,
    build_submission_fraud_check,
    ensure_within_geofence,
    resolve_effective_location,
)
from adl.crowdsource.ip_location import resolve_ip_location
from adl.crowdsource.photo_metadata import ExtractedPhotoMetadata, extract_photo_metadata
from adl.crowdsource.photo_store import PhotoStore
from adl.crowdsource.projection import (
    filter_points_within_radius,
    merge_point_events_with_legacy,
    project_point_by_id,
    project_points_from_events,
)
from adl.crowdsource.validation import (
    ensure_create_fields,
    filter_enrich_details,
    normalize_category,
    normalize_enrich_payload,
    normalize_event_type,
)

logger = logging.getLogger(__name__)

INLINE_IMAGE_REGEX = re.compile(r"^data:(image/[a-z0-9.+-]+);base64,", re.IGNORECASE)

COMPAT_PUT_SOURCE = "compat_put"

IpLocator = Callable[[Mapping[str, str], Optional[str]], Awaitable[Optional[Location]]]


@dataclass(frozen=True)
class ParsedImage:
    """Decoded inline photo."""
    data: bytes
    mime: str
    ext: str


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a submission; ``created`` is False for an idempotent replay."""
    event: PointEvent
    created: bool = True


def mime_to_extension(mime: str) -> str:
    return IMAGE_EXTENSIONS.get(mime, "jpg")


def parse_image_payload(value: Any, max_bytes: int) -> ParsedImage:
    """
    Decode a ``data:image/...;base64,`` photo payload.

    Raises:
        ValidationError: If the payload is malformed, empty, of a
            disallowed type or larger than max_bytes
    """
    if not isinstance(value, str):
        raise ValidationError("Invalid photo format")
    match = INLINE_IMAGE_REGEX.match(value)
    if not match:
        raise ValidationError("Invalid photo format")

    mime = match.group(1).lower()
    if mime not in ALLOWED_IMAGE_MIME:
        raise ValidationError("Invalid photo format")

    try:
        data = base64.b64decode(value[value.index(",") + 1:])
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid photo format") from None
    if not data:
        raise ValidationError("Invalid photo format")

    if len(data) > max_bytes:
        raise ValidationError(
            f"Photo exceeds maximum size of {round(max_bytes / (1024 * 1024))}MB"
        )
    return ParsedImage(data=data, mime=mime, ext=mime_to_extension(mime))


def normalize_map_scope(value: Any) -> str:
    if not isinstance(value, str):
        return DEFAULT_MAP_SCOPE
    normalized = value.strip().lower()
    return normalized if normalized in MAP_SCOPES else DEFAULT_MAP_SCOPE


class SubmissionService:
    """
    Server side of the contribution pipeline.

    Args:
        store: StorageStore holding events, profiles and legacy submissions
        photo_store: Where uploaded photos are written
        config: Settings (thresholds, limits, XP)
        ip_locator: Coroutine resolving a request's IP-derived location
        forensics: Builder for the admin event view
    """

    def __init__(
        self,
        store,
        photo_store: PhotoStore,
        config: Optional[Settings] = None,
        ip_locator: Optional[IpLocator] = None,
        forensics: Optional[ForensicsService] = None,
    ):
        self.store = store
        self.photo_store = photo_store
        self.config = config or default_settings
        self.ip_locator = ip_locator or resolve_ip_location
        self.forensics = forensics or ForensicsService(
            lookup_cap=self.config.admin_forensics_lookup_cap
        )

        logger.info("SubmissionService initialized")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_events(self) -> List[PointEvent]:
        """Stored events plus converted legacy submissions."""
        events = await self.store.get_point_events()
        legacy = await self.store.get_legacy_submissions()
        return merge_point_events_with_legacy(events, legacy)

    def resolve_scope(self, requested: Any, viewer: Optional[SubmissionAuthContext]) -> str:
        """
        Map scope the caller may read.

        Raises:
            AuthenticationError: Expanded scope without a session
            AuthorizationError: Expanded scope for a non-admin
        """
        scope = normalize_map_scope(requested)
        if scope == DEFAULT_MAP_SCOPE:
            return scope
        if viewer is None:
            raise AuthenticationError("Unauthorized")
        if not viewer.is_admin:
            raise AuthorizationError("Forbidden")
        return scope

    async def _scoped_events(self, scope: str) -> List[PointEvent]:
        events = await self.load_events()
        return [event for event in events if is_within_scope(event.location, scope)]

    async def list_points(
        self,
        viewer: Optional[SubmissionAuthContext],
        scope: Any = None,
        center: Optional[Location] = None,
        radius_km: Optional[float] = None,
    ) -> List[ProjectedPoint]:
        """Projected points in scope, optionally limited to a radius."""
        effective_scope = self.resolve_scope(scope, viewer)
        points = project_points_from_events(await self._scoped_events(effective_scope))
        if center is not None and radius_km is not None:
            points = filter_points_within_radius(points, center, radius_km)
        return points

    async def list_events(
        self,
        viewer: Optional[SubmissionAuthContext],
        scope: Any = None,
    ) -> List[Dict[str, Any]]:
        """Raw events in scope: all of them for admins, own events otherwise."""
        if viewer is None:
            raise AuthenticationError("Unauthorized")
        effective_scope = self.resolve_scope(scope, viewer)
        events = filter_events_for_viewer(await self._scoped_events(effective_scope), viewer)
        return [event.to_dict() for event in events]

    async def list_admin_events(
        self,
        viewer: Optional[SubmissionAuthContext],
        scope: Any = None,
    ) -> List[Dict[str, Any]]:
        """Events with fraud checks, recovering missing ones from stored photos."""
        access = resolve_admin_view_access(viewer)
        if access == AdminViewAccess.UNAUTHORIZED:
            raise AuthenticationError("Unauthorized")
        if access == AdminViewAccess.FORBIDDEN:
            raise AuthorizationError("Forbidden")
        effective_scope = self.resolve_scope(scope, viewer)
        return await self.forensics.build_admin_events(await self._scoped_events(effective_scope))

    async def get_submission(
        self,
        submission_id: str,
        viewer: SubmissionAuthContext,
        view: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Single event (``view="event"``) or projected point by id.

        A point id resolves to its projection; otherwise an event id
        resolves to the event itself.
        """
        events = await self.load_events()

        if view == "event":
            event = next((e for e in events if e.id == submission_id), None)
            if event is None:
                raise NotFoundError("Submission event not found")
            if not can_view_event_detail(event, viewer):
                raise AuthorizationError("Forbidden")
            return event.to_dict()

        point = project_point_by_id(events, submission_id)
        if point is not None:
            return point.to_dict()

        event = next((e for e in events if e.id == submission_id), None)
        if event is not None:
            if can_view_event_detail(event, viewer):
                return event.to_dict()
            return redact_event_user_ids([event])[0]

        raise NotFoundError("Submission not found")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _extract(self, image: ParsedImage) -> ExtractedPhotoMetadata:
        return await asyncio.to_thread(
            extract_photo_metadata, image.data, mime=image.mime, ext=image.ext
        )

    async def _save_photo(self, name: str, image: ParsedImage) -> str:
        try:
            return await self.photo_store.save(name, image.data, image.mime, image.ext)
        except SubmissionError:
            raise
        except Exception as e:
            logger.error(f"Photo upload failed for {name}: {e}")
            raise PhotoStorageError("Unable to store photo") from e

    async def create_submission(
        self,
        body: Mapping[str, Any],
        viewer: SubmissionAuthContext,
        headers: Optional[Mapping[str, str]] = None,
        peer: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Validate and record a CREATE or ENRICH submission.

        Args:
            body: Submission payload (category, eventType, pointId, location,
                details, imageBase64, secondImageBase64)
            viewer: Authenticated submitter
            headers: Request headers used to resolve the client IP
            peer: Socket peer address
            idempotency_key: Client token identifying a retried delivery

        Returns:
            SubmissionResult with the appended (or previously appended) event

        Raises:
            SubmissionError: Any validation, fraud, lookup or storage failure
        """
        if idempotency_key:
            existing = await self.store.find_event_by_idempotency_key(viewer.id, idempotency_key)
            if existing is not None:
                logger.info(f"Replayed idempotency key for event {existing.id}")
                return SubmissionResult(event=existing, created=False)

        category = normalize_category(body.get("category"))
        if category is None:
            raise ValidationError("Invalid category")

        event_type = normalize_event_type(body.get("eventType"))
        submission_location = parse_location(body.get("location"))
        raw_details = body.get("details")
        details = normalize_enrich_payload(
            category, dict(raw_details) if isinstance(raw_details, dict) else {}
        )

        max_bytes = self.config.max_submission_image_bytes
        if not body.get("imageBase64"):
            raise ValidationError("Photo is required")
        primary_image = parse_image_payload(body.get("imageBase64"), max_bytes)
        secondary_image = (
            parse_image_payload(body.get("secondImageBase64"), max_bytes)
            if body.get("secondImageBase64") else None
        )

        ip_location = await self.ip_locator(headers or {}, peer)
        primary_metadata = await self._extract(primary_image)

        effective_location = resolve_effective_location(
            primary_metadata.gps,
            submission_location,
            ip_location,
            submission_threshold_km=self.config.submission_gps_match_threshold_km,
            ip_threshold_km=self.config.ip_photo_match_km,
            photo_read_failed=primary_metadata.read_failed,
        )
        ensure_within_geofence(effective_location, is_admin=viewer.is_admin)

        raw_point_id = body.get("pointId")
        point_id = raw_point_id.strip() if isinstance(raw_point_id, str) else ""

        if event_type == EventType.CREATE:
            ensure_create_fields(category, details)
            if point_id and project_point_by_id(await self.load_events(), point_id) is not None:
                raise ValidationError("Point already exists; use ENRICH_EVENT to add details")
            point_id = point_id or str(uuid.uuid4())
        else:
            if not point_id:
                raise ValidationError("pointId is required for ENRICH_EVENT")
            target = project_point_by_id(await self.load_events(), point_id)
            if target is None:
                raise NotFoundError("Target point not found")
            if target.category != category:
                raise ValidationError("Category mismatch for target point")
            details = filter_enrich_details(category, details, target.gaps)

        event_id = str(uuid.uuid4())
        photo_url = await self._save_photo(event_id, primary_image)
        details["hasPhoto"] = True

        secondary_metadata = None
        if secondary_image is not None:
            details["secondPhotoUrl"] = await self._save_photo(f"{event_id}-second", secondary_image)
            details["hasSecondaryPhoto"] = True
            secondary_metadata = await self._extract(secondary_image)

        thresholds = {
            "submission_threshold_km": self.config.submission_gps_match_threshold_km,
            "ip_threshold_km": self.config.ip_photo_match_km,
        }
        details["fraudCheck"] = build_submission_fraud_check(
            submission_location=submission_location,
            effective_location=effective_location,
            ip_location=ip_location,
            primary_photo=build_photo_fraud_metadata(
                primary_metadata, submission_location, ip_location, **thresholds
            ),
            secondary_photo=build_photo_fraud_metadata(
                secondary_metadata, submission_location, ip_location, **thresholds
            ),
            **thresholds,
        ).to_dict()

        source = details.get("source")
        external_id = details.get("externalId")
        event = PointEvent(
            id=event_id,
            point_id=point_id,
            event_type=event_type,
            user_id=viewer.id,
            category=category,
            location=effective_location,
            details=details,
            created_at=utc_now_iso(),
            photo_url=photo_url,
            source=source if isinstance(source, str) else None,
            external_id=external_id if isinstance(external_id, str) else None,
            idempotency_key=idempotency_key or None,
        )

        await self.store.insert_point_event(event)
        await self._award_xp(viewer.id)

        logger.info(
            f"Recorded {event_type.value} {event.id} for point {point_id} ({category}) "
            f"by {viewer.id}"
        )
        return SubmissionResult(event=event, created=True)

    async def _award_xp(self, user_id: str) -> None:
        # Read-modify-write; concurrent submissions may lose an increment
        profile = await self.store.get_user_profile(user_id)
        if profile is None:
            return
        profile.xp = (profile.xp or 0) + self.config.base_event_xp
        await self.store.upsert_user_profile(user_id, profile)

    async def compat_enrich(
        self,
        submission_id: str,
        body: Mapping[str, Any],
        viewer: SubmissionAuthContext,
    ) -> PointEvent:
        """
        Enrich a point through the older PUT interface.

        No photo or gap filtering is applied; the event is tagged with the
        ``compat_put`` source.
        """
        raw_details = body.get("details")
        if not isinstance(raw_details, dict):
            raise ValidationError("Missing details payload")

        target = project_point_by_id(await self.load_events(), submission_id)
        if target is None:
            raise NotFoundError("Submission not found")

        photo_url = body.get("photoUrl")
        event = PointEvent(
            id=str(uuid.uuid4()),
            point_id=target.point_id,
            event_type=EventType.ENRICH,
            user_id=normalize_actor_id(viewer.id),
            category=target.category,
            location=target.location,
            details=normalize_enrich_payload(target.category, dict(raw_details)),
            created_at=utc_now_iso(),
            photo_url=photo_url if isinstance(photo_url, str) and photo_url else None,
            source=COMPAT_PUT_SOURCE,
        )
        await self.store.insert_point_event(event)
        logger.info(f"Recorded compat enrichment {event.id} for point {target.point_id}")
        return event
