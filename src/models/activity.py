"""
Activity and ActivitySong models - the mapped output of a processing job.

Natural keys make reprocessing idempotent:
- activities: (user_id, strava_activity_id)
- activity_songs: (activity_id, spotify_track_id, played_at)
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import (
    String, Text, Integer, BigInteger, Float, DateTime, ForeignKey, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    strava_activity_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    elapsed_time: Mapped[int] = mapped_column(Integer, nullable=False)  # seconds
    distance: Mapped[Optional[float]] = mapped_column(Float)  # meters
    polyline: Mapped[str] = mapped_column(Text, nullable=False)
    coordinates: Mapped[Optional[list]] = mapped_column(JSONB)  # [[lat, lng], ...]
    splits_metric: Mapped[Optional[list]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "strava_activity_id", name="uq_activities_user_strava"),
    )


class ActivitySong(Base):
    __tablename__ = "activity_songs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    activity_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    spotify_track_id: Mapped[str] = mapped_column(String(255), nullable=False)
    track_name: Mapped[Optional[str]] = mapped_column(String(500))
    artist_name: Mapped[Optional[str]] = mapped_column(String(500))
    album_name: Mapped[Optional[str]] = mapped_column(String(500))
    album_art_url: Mapped[Optional[str]] = mapped_column(Text)
    spotify_url: Mapped[Optional[str]] = mapped_column(Text)
    played_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    percentage_complete: Mapped[float] = mapped_column(Float, nullable=False)  # 0.0 - 1.0
    latitude: Mapped[Optional[float]] = mapped_column(Float)
    longitude: Mapped[Optional[float]] = mapped_column(Float)
    coordinate_index: Mapped[Optional[int]] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint(
            "activity_id", "spotify_track_id", "played_at",
            name="uq_activity_songs_natural_key",
        ),
    )
