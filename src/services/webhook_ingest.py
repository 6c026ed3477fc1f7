"""
Webhook ingestor - turns Strava push notifications into durable work.

Order of operations per notification:
1. Validate (reject without side effects)
2. Record the audit row and commit (audit-before-action)
3. Apply: enqueue a mapping job (create) or delete stored data (delete)
4. Mark the audit row processed

Never waits on job execution, so the endpoint answers well inside Strava's
2-second deadline.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.errors import ValidationError
from src.models.activity import Activity, ActivitySong
from src.models.processing_job import ProcessingJob, CLAIMABLE_STATUSES, STATUS_PROCESSING
from src.models.user import User
from src.models.webhook_event import WebhookEvent
from src.schemas.webhook_payloads import StravaWebhookEvent
from src.services.job_queue import JobQueue, notify_job_available
from src.utils.dedup import is_duplicate_delivery, release_delivery
from src.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

SUPPORTED_OBJECT_TYPE = "activity"


@dataclass
class IngestResult:
    webhook_event_id: uuid.UUID
    action: str  # enqueued, deleted, duplicate, unknown_owner, already_queued, ignored
    job_id: Optional[uuid.UUID] = None


def parse_notification(body: dict) -> StravaWebhookEvent:
    """Validate a raw notification body. Raises ValidationError on missing/malformed fields."""
    if not isinstance(body, dict):
        raise ValidationError("Webhook body must be a JSON object")
    try:
        return StravaWebhookEvent.model_validate(body)
    except PydanticValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ValidationError(f"Invalid webhook event, bad fields: {', '.join(fields)}") from e


async def ingest_notification(
    db: AsyncSession,
    body: dict,
    job_priority: int = 10,
) -> IngestResult:
    """Validate, audit, and act on one notification."""
    notification = parse_notification(body)

    event = await _record_webhook_event(db, notification, body)
    event_id = event.id
    await db.commit()

    marked_delivery = False
    try:
        if _is_activity_create(notification) and await is_duplicate_delivery(*_delivery_key(notification)):
            result = IngestResult(event_id, "duplicate")
        else:
            marked_delivery = _is_activity_create(notification)
            result = await _apply(db, notification, event_id, job_priority)
        await _mark_processed(db, event_id)
        await db.commit()
    except Exception as e:
        await db.rollback()
        if marked_delivery:
            # Rolled back: a redelivery of this event must be processed again
            await release_delivery(*_delivery_key(notification))
        await db.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == event_id)
            .values(processing_error=str(e)[:2000])
        )
        await db.commit()
        logger.error(
            "Webhook processing error: event=%s error=%s",
            str(event_id)[:8], str(e), exc_info=True,
        )
        raise

    if result.job_id is not None:
        await notify_job_available(result.job_id)
    return result


async def _record_webhook_event(
    db: AsyncSession,
    notification: StravaWebhookEvent,
    raw_payload: dict,
) -> WebhookEvent:
    """Record a webhook event in the audit trail before processing."""
    event = WebhookEvent(
        subscription_id=notification.subscription_id,
        object_type=notification.object_type,
        object_id=notification.object_id,
        aspect_type=notification.aspect_type,
        owner_id=notification.owner_id,
        event_time=notification.occurred_at,
        raw_payload=raw_payload,
        processed=False,
        correlation_id=get_correlation_id(),
    )
    db.add(event)
    await db.flush()
    return event


def _is_activity_create(notification: StravaWebhookEvent) -> bool:
    return notification.object_type == SUPPORTED_OBJECT_TYPE and notification.aspect_type == "create"


def _delivery_key(notification: StravaWebhookEvent) -> tuple:
    return (
        notification.object_type, notification.object_id,
        notification.aspect_type, notification.event_time,
    )


async def _mark_processed(db: AsyncSession, event_id: uuid.UUID) -> None:
    """Flip processed false->true. A row already processed is left untouched."""
    await db.execute(
        update(WebhookEvent)
        .where(and_(WebhookEvent.id == event_id, WebhookEvent.processed.is_(False)))
        .values(processed=True, processed_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


async def _apply(
    db: AsyncSession,
    notification: StravaWebhookEvent,
    event_id: uuid.UUID,
    job_priority: int,
) -> IngestResult:
    if notification.object_type != SUPPORTED_OBJECT_TYPE:
        logger.info(
            "Ignoring %s/%s event for object %s",
            notification.object_type, notification.aspect_type, notification.object_id,
        )
        return IngestResult(event_id, "ignored")

    if notification.aspect_type == "create":
        return await _handle_activity_create(db, notification, event_id, job_priority)

    if notification.aspect_type == "delete":
        await delete_activity(db, notification.object_id, notification.owner_id)
        return IngestResult(event_id, "deleted")

    logger.info(
        "Ignoring activity %s event for %s",
        notification.aspect_type, notification.object_id,
    )
    return IngestResult(event_id, "ignored")


async def _handle_activity_create(
    db: AsyncSession,
    notification: StravaWebhookEvent,
    event_id: uuid.UUID,
    job_priority: int,
) -> IngestResult:
    user = await _find_user_by_athlete(db, notification.owner_id)
    if user is None:
        # Nothing to act on; the event stays logged and is not retried
        logger.warning("No user found for Strava athlete ID: %s", notification.owner_id)
        return IngestResult(event_id, "unknown_owner")

    existing = await db.execute(
        select(ProcessingJob.id).where(
            and_(
                ProcessingJob.user_id == user.id,
                ProcessingJob.activity_id == notification.object_id,
                ProcessingJob.status.in_(CLAIMABLE_STATUSES + (STATUS_PROCESSING,)),
            )
        ).limit(1)
    )
    existing_id = existing.scalar_one_or_none()
    if existing_id is not None:
        logger.info(
            "Activity %s already queued as job %s",
            notification.object_id, str(existing_id)[:8],
        )
        return IngestResult(event_id, "already_queued", existing_id)

    job = await JobQueue(db).enqueue(
        user_id=user.id,
        activity_id=notification.object_id,
        webhook_event_id=event_id,
        priority=job_priority,
    )
    return IngestResult(event_id, "enqueued", job.id)


async def _find_user_by_athlete(db: AsyncSession, athlete_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.strava_athlete_id == athlete_id))
    return result.scalar_one_or_none()


async def delete_activity(db: AsyncSession, strava_activity_id: int, athlete_id: Optional[int] = None) -> int:
    """
    Remove a stored activity and its mapped songs. Applied synchronously:
    a failure here is not retried through the job queue.
    """
    query = select(Activity.id).where(Activity.strava_activity_id == strava_activity_id)
    if athlete_id is not None:
        user = await _find_user_by_athlete(db, athlete_id)
        if user is not None:
            query = query.where(Activity.user_id == user.id)

    activity_ids = list((await db.execute(query)).scalars().all())
    if not activity_ids:
        return 0

    await db.execute(
        delete(ActivitySong)
        .where(ActivitySong.activity_id.in_(activity_ids))
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        delete(Activity)
        .where(Activity.id.in_(activity_ids))
        .execution_options(synchronize_session=False)
    )
    logger.info("Deleted activity %s from database", strava_activity_id)
    return len(activity_ids)
