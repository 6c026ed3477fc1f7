"""
Strava webhook endpoints - subscription handshake and event delivery.

Strava requires a response within 2 seconds, so the POST handler only
audits the event and enqueues work; mapping happens later in the job processor.
"""
import hmac
import logging
import time
from typing import Optional

from fastapi import APIRouter, Request, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database import get_db
from src.errors import ValidationError
from src.models.webhook_subscription import WebhookSubscription
from src.schemas.api_responses import WebhookAckResponse
from src.services.webhook_ingest import ingest_notification

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.get("/strava")
async def strava_webhook_verify(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    db: AsyncSession = Depends(get_db),
):
    """
    Subscription handshake. Strava sends hub.mode=subscribe with a challenge
    that must be echoed back as {"hub.challenge": "..."}.
    """
    if hub_mode != "subscribe":
        raise HTTPException(status_code=400, detail="Invalid mode")
    if not hub_challenge:
        raise HTTPException(status_code=400, detail="Missing challenge")

    result = await db.execute(
        select(WebhookSubscription.verify_token)
        .where(WebhookSubscription.subscription_status == "active")
        .order_by(WebhookSubscription.created_at.desc())
        .limit(1)
    )
    expected = result.scalar_one_or_none()

    if expected is None:
        # Subscription creation is still in flight; accept the challenge
        logger.warning("No active webhook subscription found in database")
    elif not hmac.compare_digest(hub_verify_token or "", expected):
        logger.warning("Webhook verify token mismatch")
        raise HTTPException(status_code=403, detail="Invalid verify token")

    return {"hub.challenge": hub_challenge}


@router.post("/strava", response_model=WebhookAckResponse)
async def strava_webhook_event(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Receive an activity/athlete change notification.
    Malformed events get 400; everything else answers 200 so Strava does not
    redeliver, with failures kept on the audit row.
    """
    started = time.monotonic()

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        result = await ingest_notification(
            db, body, job_priority=get_settings().webhook_job_priority,
        )
    except ValidationError as e:
        logger.warning("Rejected webhook event: %s", str(e))
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.error("Webhook failed after %dms: %s", elapsed_ms, str(e))
        return WebhookAckResponse(success=False, error="Internal error")

    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Webhook processed in %dms: action=%s event=%s",
        elapsed_ms, result.action, str(result.webhook_event_id)[:8],
    )
    return WebhookAckResponse(success=True, action=result.action)
