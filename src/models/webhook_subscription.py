"""
WebhookSubscription - local mirror of the Strava push subscription.
Holds the verify token echoed back during the subscription handshake.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text, BigInteger
from sqlalchemy.dialects.postgresql import UUID
from src.database import Base


class WebhookSubscription(Base):
    __tablename__ = "webhook_subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(BigInteger, unique=True, nullable=True)  # Strava's ID
    callback_url = Column(Text, nullable=False)
    verify_token = Column(String(255), nullable=False)
    subscription_status = Column(
        String(20), nullable=False, default="active", server_default="active"
    )  # active, inactive, failed
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
