"""
Visibility rules for submission events.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from adl.crowdsource.events import PointEvent


@dataclass(frozen=True)
class SubmissionAuthContext:
    """Authenticated caller as seen by the submission endpoints."""
    id: str
    is_admin: bool = False


class AdminViewAccess(str, Enum):
    OK = "ok"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


def normalize_actor_id(value: str) -> str:
    """User ids compare case-insensitively and ignore surrounding space."""
    return value.lower().strip()


def to_submission_auth_context(
    user_id: Any,
    is_admin: Any = False,
) -> Optional[SubmissionAuthContext]:
    """Build a viewer context; None when the id is missing or blank."""
    if not isinstance(user_id, str):
        return None
    normalized = normalize_actor_id(user_id)
    if not normalized:
        return None
    return SubmissionAuthContext(id=normalized, is_admin=is_admin is True)


def redact_event_user_ids(events: Iterable[PointEvent]) -> List[Dict[str, Any]]:
    """Serialize events without their userId."""
    return [event.to_dict(include_user=False) for event in events]


def filter_events_for_viewer(
    events: Iterable[PointEvent],
    viewer: SubmissionAuthContext,
) -> List[PointEvent]:
    """Admins see every event; everyone else only their own."""
    if viewer.is_admin:
        return list(events)
    return [event for event in events if normalize_actor_id(event.user_id) == viewer.id]


def can_view_event_detail(event: PointEvent, viewer: SubmissionAuthContext) -> bool:
    if viewer.is_admin:
        return True
    return normalize_actor_id(event.user_id) == viewer.id


def resolve_admin_view_access(viewer: Optional[SubmissionAuthContext]) -> AdminViewAccess:
    if viewer is None:
        return AdminViewAccess.UNAUTHORIZED
    if not viewer.is_admin:
        return AdminViewAccess.FORBIDDEN
    return AdminViewAccess.OK
