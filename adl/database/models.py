"""
SQLAlchemy models for ADL contributions
Point events, contributor profiles and legacy submissions
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Float, String, Text, Boolean, Integer,
    DateTime, Index, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from adl.core.geo_utils import Location
from adl.crowdsource.events import (
    EventType,
    LegacySubmission,
    PointEvent,
    UserProfile,
    format_timestamp,
    parse_timestamp,
)

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
DetailsType = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PointEventRecord(Base):
    """
    Immutable contribution event.

    Rows are only ever inserted; a point's current state is derived from
    all of its rows at read time.
    """
    __tablename__ = "point_events"

    id = Column(String(64), primary_key=True)
    point_id = Column(String(64), nullable=False)
    event_type = Column(String(20), nullable=False)
    user_id = Column(String(255), nullable=False)
    category = Column(String(30), nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    details = Column(DetailsType, nullable=False, default=dict)
    photo_url = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    # Provenance
    source = Column(String(100))
    external_id = Column(String(255))

    idempotency_key = Column(String(64))

    __table_args__ = (
        Index("idx_point_events_point_id", point_id),
        Index("idx_point_events_created_at", created_at),
        Index("idx_point_events_idempotency", user_id, idempotency_key, unique=True),
    )

    def __repr__(self):
        return f"<PointEventRecord(id={self.id}, point={self.point_id}, type={self.event_type})>"

    @classmethod
    def from_event(cls, event: PointEvent) -> "PointEventRecord":
        """Create a row from a PointEvent."""
        return cls(
            id=event.id,
            point_id=event.point_id,
            event_type=event.event_type.value,
            user_id=event.user_id.lower().strip(),
            category=event.category,
            latitude=event.location.latitude,
            longitude=event.location.longitude,
            details=event.details,
            photo_url=event.photo_url,
            created_at=parse_timestamp(event.created_at) or _utc_now(),
            source=event.source,
            external_id=event.external_id,
            idempotency_key=event.idempotency_key,
        )

    def to_event(self) -> PointEvent:
        """Convert back to a PointEvent."""
        try:
            event_type = EventType(self.event_type)
        except ValueError:
            event_type = EventType.CREATE
        return PointEvent(
            id=self.id,
            point_id=self.point_id or self.id,
            event_type=event_type,
            user_id=(self.user_id or "").lower().strip(),
            category=self.category,
            location=Location(latitude=self.latitude, longitude=self.longitude),
            details=dict(self.details or {}),
            created_at=format_timestamp(self.created_at),
            photo_url=self.photo_url,
            source=self.source,
            external_id=self.external_id,
            idempotency_key=self.idempotency_key,
        )


class UserProfileRecord(Base):
    """Contributor profile with accumulated XP."""
    __tablename__ = "user_profiles"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")
    xp = Column(Integer, nullable=False, default=0)
    is_admin = Column(Boolean, nullable=False, default=False)
    map_scope = Column(String(20), nullable=False, default="bonamoussadi")
    updated_at = Column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)

    def __repr__(self):
        return f"<UserProfileRecord(id={self.id}, xp={self.xp})>"

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            email=self.email or "",
            name=self.name or "",
            xp=max(0, int(self.xp or 0)),
            is_admin=bool(self.is_admin),
            map_scope=self.map_scope or "bonamoussadi",
        )


class LegacySubmissionRecord(Base):
    """Submission stored before point events existed."""
    __tablename__ = "legacy_submissions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(255), nullable=False)
    category = Column(String(30), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    details = Column(DetailsType, nullable=False, default=dict)
    photo_url = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    def to_submission(self) -> LegacySubmission:
        return LegacySubmission(
            id=self.id,
            user_id=self.user_id,
            category=self.category,
            location=Location(latitude=self.latitude, longitude=self.longitude),
            details=dict(self.details or {}),
            created_at=format_timestamp(self.created_at),
            photo_url=self.photo_url,
        )
