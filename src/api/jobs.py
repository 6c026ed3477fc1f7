"""
Job trigger endpoints - process queued jobs on demand or from cron,
inspect queue statistics, and manually requeue failed jobs.
"""
import hmac
import logging
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database import get_db
from src.schemas.api_responses import JobStatsResponse, ProcessJobsResponse, RequeueResponse
from src.schemas.webhook_payloads import ProcessJobsRequest
from src.services.job_queue import JobQueue
from src.workers.job_processor import process_pending_jobs

logger = logging.getLogger(__name__)
router = APIRouter(tags=["jobs"])


@router.post("/api/jobs/process", response_model=ProcessJobsResponse)
async def process_jobs(
    payload: Optional[ProcessJobsRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Process up to `limit` pending/retry jobs now, optionally cleaning up old ones."""
    payload = payload or ProcessJobsRequest()
    logger.info("Processing jobs with limit: %d", payload.limit)

    processed = await process_pending_jobs(payload.limit)

    cleaned_up = 0
    if payload.cleanup:
        cleaned_up = await JobQueue(db).cleanup(get_settings().job_retention_days)

    message = f"Processed {processed} jobs"
    if payload.cleanup:
        message += f", cleaned up {cleaned_up} old jobs"
    return ProcessJobsResponse(processed=processed, cleaned_up=cleaned_up, message=message)


@router.get("/api/jobs/process", response_model=JobStatsResponse)
async def job_stats(db: AsyncSession = Depends(get_db)):
    """Queue statistics grouped by status."""
    return await JobQueue(db).stats()


@router.post("/api/jobs/{job_id}/requeue", response_model=RequeueResponse)
async def requeue_job(job_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """Give a failed job a fresh attempt budget."""
    if not await JobQueue(db).requeue(job_id):
        raise HTTPException(status_code=404, detail="No failed job with that id")
    return RequeueResponse(success=True, job_id=str(job_id))


@router.get("/api/cron/process-jobs", response_model=ProcessJobsResponse)
async def cron_process_jobs(authorization: Optional[str] = Header(default=None)):
    """Scheduled trigger. Requires `Authorization: Bearer <CRON_SECRET>` when configured."""
    settings = get_settings()
    expected = f"Bearer {settings.cron_secret}"
    if settings.cron_secret and not hmac.compare_digest(authorization or "", expected):
        raise HTTPException(status_code=401, detail="Unauthorized")

    started = time.monotonic()
    processed = await process_pending_jobs(settings.cron_batch_size)
    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info("[CRON] Processed %d jobs in %dms", processed, duration_ms)

    return ProcessJobsResponse(
        processed=processed,
        duration_ms=duration_ms,
        message=f"Processed {processed} jobs",
    )
