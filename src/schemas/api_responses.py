"""
API response schemas for webhook, subscription, and job endpoints.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class WebhookAckResponse(BaseModel):
    success: bool
    action: Optional[str] = None
    error: Optional[str] = None


class StatusCount(BaseModel):
    status: str
    count: int
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None


class JobStatsResponse(BaseModel):
    total: int
    by_status: list[StatusCount]


class ProcessJobsResponse(BaseModel):
    success: bool = True
    processed: int
    cleaned_up: int = 0
    duration_ms: Optional[int] = None
    message: str = ""


class RequeueResponse(BaseModel):
    success: bool
    job_id: str


class SubscriptionRecord(BaseModel):
    id: str
    subscription_id: Optional[int] = None
    callback_url: str
    subscription_status: str
    created_at: Optional[datetime] = None


class SubscriptionListResponse(BaseModel):
    strava: list[dict[str, Any]]
    database: list[SubscriptionRecord]


class SubscriptionCreateResponse(BaseModel):
    success: bool = True
    subscription: dict[str, Any]
    message: str = "Webhook subscription created successfully"
