"""
Database models - import all models here so metadata.create_all can discover them.
"""
from src.models.user import User
from src.models.auth_token import AuthToken
from src.models.webhook_event import WebhookEvent
from src.models.webhook_subscription import WebhookSubscription
from src.models.processing_job import ProcessingJob
from src.models.activity import Activity, ActivitySong

__all__ = [
    "User",
    "AuthToken",
    "WebhookEvent",
    "WebhookSubscription",
    "ProcessingJob",
    "Activity",
    "ActivitySong",
]
