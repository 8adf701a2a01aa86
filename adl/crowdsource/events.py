"""
Point event records for crowdsourced contributions.

Events are immutable and append-only; the current state of a point is
always derived from them (see projection.py).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from adl.core.geo_utils import Location, parse_location

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class EventType(str, Enum):
    """Kind of point event."""
    CREATE = "CREATE_EVENT"
    ENRICH = "ENRICH_EVENT"


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision."""
    return format_timestamp(datetime.now(timezone.utc))


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into aware UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def timestamp_sort_key(value: Any) -> datetime:
    """Sort key for event timestamps; unparseable values sort first."""
    return parse_timestamp(value) or EPOCH


@dataclass(frozen=True)
class PointEvent:
    """
    One contributor's observation about a point at a point in time.

    ``details`` is the category bag produced by the validator; it is never
    mutated once the event exists.
    """
    id: str
    point_id: str
    event_type: EventType
    user_id: str
    category: str
    location: Location
    details: Dict[str, Any]
    created_at: str
    photo_url: Optional[str] = None
    source: Optional[str] = None
    external_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    def to_dict(self, include_user: bool = True) -> Dict[str, Any]:
        """Convert to the camelCase wire format."""
        data: Dict[str, Any] = {
            "id": self.id,
            "pointId": self.point_id,
            "eventType": self.event_type.value,
            "category": self.category,
            "location": self.location.to_dict(),
            "details": self.details,
            "createdAt": self.created_at,
        }
        if include_user:
            data["userId"] = self.user_id
        if self.photo_url:
            data["photoUrl"] = self.photo_url
        if self.source:
            data["source"] = self.source
        if self.external_id:
            data["externalId"] = self.external_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PointEvent":
        location = parse_location(data.get("location"))
        if location is None:
            raise ValueError(f"Point event {data.get('id')} has no valid location")
        try:
            event_type = EventType(data.get("eventType"))
        except ValueError:
            event_type = EventType.CREATE
        details = data.get("details")
        return cls(
            id=str(data["id"]),
            point_id=str(data.get("pointId") or data["id"]),
            event_type=event_type,
            user_id=str(data.get("userId") or ""),
            category=str(data.get("category")),
            location=location,
            details=dict(details) if isinstance(details, dict) else {},
            created_at=str(data.get("createdAt") or utc_now_iso()),
            photo_url=data.get("photoUrl") or None,
            source=data.get("source") or None,
            external_id=data.get("externalId") or None,
            idempotency_key=data.get("idempotencyKey") or None,
        )


@dataclass
class ProjectedPoint:
    """Current state of a point, folded from its events."""
    point_id: str
    category: str
    location: Location
    details: Dict[str, Any]
    created_at: str
    updated_at: str
    gaps: List[str] = field(default_factory=list)
    events_count: int = 1
    event_ids: List[str] = field(default_factory=list)
    photo_url: Optional[str] = None
    source: Optional[str] = None
    external_id: Optional[str] = None

    @property
    def id(self) -> str:
        return self.point_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.point_id,
            "pointId": self.point_id,
            "category": self.category,
            "location": self.location.to_dict(),
            "details": self.details,
            "photoUrl": self.photo_url,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "source": self.source,
            "externalId": self.external_id,
            "gaps": list(self.gaps),
            "eventsCount": self.events_count,
            "eventIds": list(self.event_ids),
        }


@dataclass(frozen=True)
class LegacySubmission:
    """Pre-event-sourcing submission record."""
    id: str
    user_id: str
    category: str
    location: Location
    details: Dict[str, Any]
    created_at: str
    photo_url: Optional[str] = None


@dataclass
class UserProfile:
    """Contributor profile as held by the storage collaborator."""
    id: str
    email: str = ""
    name: str = ""
    xp: int = 0
    is_admin: bool = False
    map_scope: str = "bonamoussadi"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "XP": self.xp,
            "isAdmin": self.is_admin,
            "mapScope": self.map_scope,
        }
