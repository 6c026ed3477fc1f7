"""
Push subscription management - create, list, and delete the application's
Strava webhook subscription, mirrored into webhook_subscriptions.
"""
import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.errors import UpstreamError
from src.integrations.strava import get_strava_client
from src.models.webhook_subscription import WebhookSubscription
from src.schemas.api_responses import (
    SubscriptionCreateResponse,
    SubscriptionListResponse,
    SubscriptionRecord,
)
from src.schemas.webhook_payloads import SubscriptionCreateRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks/subscribe", tags=["subscriptions"])


def _upstream_http_error(e: UpstreamError, action: str) -> HTTPException:
    status = e.status_code if e.status_code and 400 <= e.status_code < 600 else 502
    return HTTPException(status_code=status, detail=f"Failed to {action} subscription with Strava")


@router.get("", response_model=SubscriptionListResponse)
async def list_subscriptions(db: AsyncSession = Depends(get_db)):
    """Subscriptions as Strava reports them, next to our local records."""
    try:
        remote = await get_strava_client().list_subscriptions()
    except UpstreamError as e:
        logger.error("Error fetching webhook subscriptions: %s", str(e))
        raise _upstream_http_error(e, "fetch")

    result = await db.execute(
        select(WebhookSubscription).order_by(WebhookSubscription.created_at.desc())
    )
    local = [
        SubscriptionRecord(
            id=str(row.id),
            subscription_id=row.subscription_id,
            callback_url=row.callback_url,
            subscription_status=row.subscription_status,
            created_at=row.created_at,
        )
        for row in result.scalars().all()
    ]
    return SubscriptionListResponse(strava=remote, database=local)


@router.post("", response_model=SubscriptionCreateResponse)
async def create_subscription(
    payload: SubscriptionCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create the push subscription. Strava allows one per application, so an
    existing one must be deleted first. The verify token is stored before the
    call because Strava performs the handshake while the call is in flight.
    """
    strava = get_strava_client()
    try:
        existing = await strava.list_subscriptions()
    except UpstreamError as e:
        raise _upstream_http_error(e, "check")
    if existing:
        raise HTTPException(
            status_code=409,
            detail="A webhook subscription already exists. Delete it first before creating a new one.",
        )

    verify_token = secrets.token_hex(32)
    record = WebhookSubscription(
        callback_url=payload.callback_url,
        verify_token=verify_token,
        subscription_status="active",
    )
    db.add(record)
    await db.commit()

    try:
        subscription = await strava.create_subscription(payload.callback_url, verify_token)
    except UpstreamError as e:
        record.subscription_status = "failed"
        await db.commit()
        logger.error("Error creating webhook subscription: %s", str(e))
        raise _upstream_http_error(e, "create")

    record.subscription_id = subscription.get("id")
    await db.commit()
    return SubscriptionCreateResponse(subscription=subscription)


@router.delete("")
async def delete_subscription(
    subscription_id: int = Query(alias="id"),
    db: AsyncSession = Depends(get_db),
):
    """Delete the subscription upstream and mark the local record inactive."""
    try:
        await get_strava_client().delete_subscription(subscription_id)
    except UpstreamError as e:
        logger.error("Error deleting webhook subscription: %s", str(e))
        raise _upstream_http_error(e, "delete")

    await db.execute(
        update(WebhookSubscription)
        .where(WebhookSubscription.subscription_id == subscription_id)
        .values(subscription_status="inactive")
    )
    return {"success": True, "message": "Webhook subscription deleted successfully"}
