"""
Storage contract consumed by the contribution pipeline.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from adl.crowdsource.events import LegacySubmission, PointEvent, UserProfile


class StorageStore(ABC):
    """
    Event store and profile store used by the submission service.

    Implementations raise StorageUnavailableError when the backend cannot
    be reached or times out.
    """

    @abstractmethod
    async def get_point_events(self) -> List[PointEvent]:
        """All point events, oldest first."""

    @abstractmethod
    async def insert_point_event(self, event: PointEvent) -> None:
        """Append one event."""

    @abstractmethod
    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        """Profile for a user id, or None."""

    @abstractmethod
    async def upsert_user_profile(self, user_id: str, profile: UserProfile) -> None:
        """Create or replace a profile."""

    @abstractmethod
    async def get_legacy_submissions(self) -> List[LegacySubmission]:
        """Pre-event-sourcing submissions still to be merged into reads."""

    @abstractmethod
    async def find_event_by_idempotency_key(
        self, user_id: str, idempotency_key: str
    ) -> Optional[PointEvent]:
        """Event a user already created under an idempotency key, if any."""

    async def close(self) -> None:
        """Release backend resources."""

    async def ping(self) -> bool:
        """True when the backend is reachable."""
        return True

    async def initialize(self) -> None:
        """Prepare the backend (create tables) before serving requests."""
