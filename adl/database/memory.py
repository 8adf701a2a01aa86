"""
In-memory storage backend.

Constructed explicitly by the process entry point (or a test) and passed to
the app; nothing here is process-global.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from adl.crowdsource.access import normalize_actor_id
from adl.crowdsource.events import LegacySubmission, PointEvent, UserProfile
from adl.database.base import StorageStore

logger = logging.getLogger(__name__)


class MemoryStore(StorageStore):
    """Dictionary-backed store for development and tests."""

    def __init__(
        self,
        events: Optional[Iterable[PointEvent]] = None,
        profiles: Optional[Iterable[UserProfile]] = None,
        legacy_submissions: Optional[Iterable[LegacySubmission]] = None,
    ):
        self._events: List[PointEvent] = []
        self._event_ids: set = set()
        self._idempotency: Dict[Tuple[str, str], PointEvent] = {}
        self._profiles: Dict[str, UserProfile] = {}
        self._legacy: List[LegacySubmission] = list(legacy_submissions or [])

        for event in events or []:
            self._append(event)
        for profile in profiles or []:
            self._profiles[normalize_actor_id(profile.id)] = profile

        logger.info(
            f"MemoryStore initialized with {len(self._events)} events, "
            f"{len(self._profiles)} profiles"
        )

    def _append(self, event: PointEvent) -> None:
        if event.id in self._event_ids:
            # Re-inserting an id replaces the stored copy
            self._events = [e for e in self._events if e.id != event.id]
        self._events.append(event)
        self._event_ids.add(event.id)
        if event.idempotency_key:
            key = (normalize_actor_id(event.user_id), event.idempotency_key)
            self._idempotency[key] = event

    async def get_point_events(self) -> List[PointEvent]:
        return list(self._events)

    async def insert_point_event(self, event: PointEvent) -> None:
        self._append(event)

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(normalize_actor_id(user_id))

    async def upsert_user_profile(self, user_id: str, profile: UserProfile) -> None:
        self._profiles[normalize_actor_id(user_id)] = profile

    async def get_legacy_submissions(self) -> List[LegacySubmission]:
        return list(self._legacy)

    async def find_event_by_idempotency_key(
        self, user_id: str, idempotency_key: str
    ) -> Optional[PointEvent]:
        return self._idempotency.get((normalize_actor_id(user_id), idempotency_key))
