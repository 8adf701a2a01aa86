"""
PostgreSQL storage backend.
"""

import asyncio
import logging
from typing import Awaitable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from adl.core.exceptions import StorageUnavailableError
from adl.crowdsource.access import normalize_actor_id
from adl.crowdsource.events import LegacySubmission, PointEvent, UserProfile
from adl.database.base import StorageStore
from adl.database.connection import DatabaseConnection, is_connection_error
from adl.database.models import LegacySubmissionRecord, PointEventRecord, UserProfileRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PostgresStore(StorageStore):
    """
    StorageStore over PostgreSQL.

    Unreachable databases and timed-out statements surface as
    StorageUnavailableError; other database errors propagate unchanged.
    """

    def __init__(self, connection: DatabaseConnection):
        self.connection = connection
        self.timeout_s = connection.query_timeout_ms / 1000

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            logger.error(f"{operation} timed out after {self.timeout_s}s")
            raise StorageUnavailableError() from e
        except (SQLAlchemyError, OSError) as e:
            if is_connection_error(e):
                logger.error(f"{operation} failed, database unavailable: {e}")
                raise StorageUnavailableError() from e
            raise

    async def _select_events(self) -> List[PointEvent]:
        async with self.connection.get_session() as session:
            result = await session.execute(
                select(PointEventRecord).order_by(PointEventRecord.created_at.asc())
            )
            events = []
            for record in result.scalars():
                try:
                    events.append(record.to_event())
                except (TypeError, ValueError) as e:
                    logger.warning(f"Skipping unreadable point event {record.id}: {e}")
            return events

    async def get_point_events(self) -> List[PointEvent]:
        return await self._guard("get_point_events", self._select_events())

    async def _insert_event(self, event: PointEvent) -> None:
        async with self.connection.get_session() as session:
            await session.merge(PointEventRecord.from_event(event))

    async def insert_point_event(self, event: PointEvent) -> None:
        await self._guard("insert_point_event", self._insert_event(event))
        logger.debug(f"Inserted point event {event.id} for point {event.point_id}")

    async def _select_profile(self, user_id: str) -> Optional[UserProfile]:
        async with self.connection.get_session() as session:
            record = await session.get(UserProfileRecord, normalize_actor_id(user_id))
            return record.to_profile() if record else None

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        return await self._guard("get_user_profile", self._select_profile(user_id))

    async def _upsert_profile(self, user_id: str, profile: UserProfile) -> None:
        user_key = normalize_actor_id(user_id or profile.id or profile.email)
        email = normalize_actor_id(profile.email or user_key)
        name = profile.name.strip() if profile.name and profile.name.strip() else (
            email.split("@")[0] or "Contributor"
        )
        async with self.connection.get_session() as session:
            await session.merge(UserProfileRecord(
                id=user_key,
                email=email,
                name=name,
                xp=max(0, int(profile.xp)),
                is_admin=profile.is_admin is True,
                map_scope=profile.map_scope,
            ))

    async def upsert_user_profile(self, user_id: str, profile: UserProfile) -> None:
        await self._guard("upsert_user_profile", self._upsert_profile(user_id, profile))

    async def _select_legacy(self) -> List[LegacySubmission]:
        async with self.connection.get_session() as session:
            result = await session.execute(select(LegacySubmissionRecord))
            return [record.to_submission() for record in result.scalars()]

    async def get_legacy_submissions(self) -> List[LegacySubmission]:
        return await self._guard("get_legacy_submissions", self._select_legacy())

    async def _select_by_idempotency_key(
        self, user_id: str, idempotency_key: str
    ) -> Optional[PointEvent]:
        async with self.connection.get_session() as session:
            result = await session.execute(
                select(PointEventRecord)
                .where(PointEventRecord.user_id == normalize_actor_id(user_id))
                .where(PointEventRecord.idempotency_key == idempotency_key)
                .limit(1)
            )
            record = result.scalars().first()
            return record.to_event() if record else None

    async def find_event_by_idempotency_key(
        self, user_id: str, idempotency_key: str
    ) -> Optional[PointEvent]:
        return await self._guard(
            "find_event_by_idempotency_key",
            self._select_by_idempotency_key(user_id, idempotency_key),
        )

    async def close(self) -> None:
        await self.connection.close()

    async def ping(self) -> bool:
        return await self.connection.check_connection()

    async def initialize(self) -> None:
        await self._guard("initialize", self.connection.create_tables())
