"""
Webhook payload schemas - raw push notifications from Strava.
"""
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class StravaWebhookEvent(BaseModel):
    """
    Strava push notification.
    {"object_type": "activity", "object_id": 123, "aspect_type": "create",
     "owner_id": 987, "subscription_id": 12, "event_time": 1516126040, "updates": {}}
    """
    model_config = ConfigDict(extra="allow")

    object_type: str = Field(min_length=1)  # activity, athlete
    object_id: int = Field(gt=0)
    aspect_type: str = Field(min_length=1)  # create, update, delete
    owner_id: int = Field(gt=0)  # Strava athlete ID
    event_time: int = Field(ge=0)  # unix seconds
    subscription_id: Optional[int] = None
    updates: dict = Field(default_factory=dict)

    @property
    def occurred_at(self) -> datetime:
        return datetime.fromtimestamp(self.event_time, tz=timezone.utc)


class SubscriptionCreateRequest(BaseModel):
    callback_url: str = Field(min_length=1, alias="callbackUrl")

    model_config = ConfigDict(populate_by_name=True)


class ProcessJobsRequest(BaseModel):
    limit: int = Field(default=10, ge=1, le=100)
    cleanup: bool = False
