"""
Webhook event audit trail - every incoming notification is recorded before processing.
Enables debugging, replay, and compliance auditing.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text, Boolean, BigInteger
from sqlalchemy.dialects.postgresql import UUID, JSONB
from src.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(BigInteger, nullable=True)
    object_type = Column(String(50), nullable=False)  # activity, athlete
    object_id = Column(BigInteger, nullable=False, index=True)
    aspect_type = Column(String(50), nullable=False)  # create, update, delete
    owner_id = Column(BigInteger, nullable=False, index=True)  # Strava athlete ID
    event_time = Column(DateTime(timezone=True), nullable=False, index=True)
    raw_payload = Column(JSONB, nullable=False)
    processed = Column(Boolean, nullable=False, default=False, server_default="false", index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processing_error = Column(Text, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
