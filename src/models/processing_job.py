"""
ProcessingJob model - durable work queue for deferred activity mapping.
Supports delayed visibility, retries with exponential backoff,
and priority-based claiming.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Integer, BigInteger, Text, DateTime, Index, ForeignKey
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base

JOB_TYPE_MAP_ACTIVITY = "process_activity"

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_RETRY = "retry"

CLAIMABLE_STATUSES = (STATUS_PENDING, STATUS_RETRY)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


class ProcessingJob(Base):
    __tablename__ = "processing_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )

    job_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=JOB_TYPE_MAP_ACTIVITY
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Strava activity ID to process
    activity_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    webhook_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("webhook_events.id", ondelete="SET NULL")
    )

    status: Mapped[str] = mapped_column(
        String(20), default=STATUS_PENDING, nullable=False
    )  # pending, processing, completed, failed, retry

    priority: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )  # higher = sooner

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    # Earliest time the job may be claimed
    visible_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    result_data: Mapped[Optional[dict]] = mapped_column(JSONB)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_processing_jobs_claim", "status", "visible_at", "priority"),
    )

    def __repr__(self) -> str:
        return f"<ProcessingJob {self.job_type} activity={self.activity_id} ({self.status})>"
