"""
Job queue - durable, priority-ordered work queue on the processing_jobs table.

Claiming is a compare-and-set on status: a job moves to `processing` only if it
is still pending/retry and visible at the moment of the UPDATE, so concurrent
claimants can never both receive it. The loser of a race simply gets nothing.

Retries use exponential backoff of 2^attempts minutes (2, 4, 8, ...).
A job in `failed` is terminal and is only reprocessed through requeue().
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select, update, delete, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.processing_job import (
    ProcessingJob,
    JOB_TYPE_MAP_ACTIVITY,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_RETRY,
    CLAIMABLE_STATUSES,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)

JOB_NOTIFY_KEY = "trailtune:job_notify"
DEFAULT_MAX_ATTEMPTS = 3
MAX_ERROR_LENGTH = 2000
STALE_LEASE_MINUTES = 15


def backoff_delay(attempts: int) -> timedelta:
    """Delay before a failed job becomes claimable again: 2^attempts minutes."""
    return timedelta(minutes=2 ** attempts)


def _held_by(job_id: uuid.UUID, attempt: Optional[int]):
    """Row filter for a job still in `processing`, optionally under one claimed attempt."""
    clause = and_(ProcessingJob.id == job_id, ProcessingJob.status == STATUS_PROCESSING)
    if attempt is not None:
        clause = and_(clause, ProcessingJob.attempts == attempt)
    return clause


class JobQueue:
    """Queue operations bound to one database session."""

    def __init__(self, db: AsyncSession, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def enqueue(
        self,
        user_id: uuid.UUID,
        activity_id: int,
        webhook_event_id: Optional[uuid.UUID] = None,
        job_type: str = JOB_TYPE_MAP_ACTIVITY,
        priority: int = 0,
        delay_seconds: int = 0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> ProcessingJob:
        """Insert a pending job. Caller owns the commit."""
        visible_at = self._clock()
        if delay_seconds > 0:
            visible_at = visible_at + timedelta(seconds=delay_seconds)

        job = ProcessingJob(
            job_type=job_type,
            user_id=user_id,
            activity_id=activity_id,
            webhook_event_id=webhook_event_id,
            status=STATUS_PENDING,
            priority=priority,
            attempts=0,
            max_attempts=max_attempts,
            visible_at=visible_at,
        )
        self.db.add(job)
        await self.db.flush()

        logger.info(
            "Job enqueued: type=%s activity=%s priority=%d delay=%ds id=%s",
            job_type, activity_id, priority, delay_seconds, str(job.id)[:8],
        )
        return job

    async def claim_batch(self, limit: int) -> list[ProcessingJob]:
        """
        Atomically claim up to `limit` visible pending/retry jobs, highest
        priority first, then oldest visibility. Each claimed job is moved to
        `processing` with its attempt count incremented. Commits.
        """
        now = self._clock()
        result = await self.db.execute(
            select(ProcessingJob.id)
            .where(
                and_(
                    ProcessingJob.status.in_(CLAIMABLE_STATUSES),
                    ProcessingJob.visible_at <= now,
                    ProcessingJob.attempts < ProcessingJob.max_attempts,
                )
            )
            .order_by(ProcessingJob.priority.desc(), ProcessingJob.visible_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        candidate_ids = list(result.scalars().all())

        claimed_ids = []
        for job_id in candidate_ids:
            if await self.try_claim(job_id, now):
                claimed_ids.append(job_id)
        await self.db.commit()

        if not claimed_ids:
            return []

        rows = await self.db.execute(
            select(ProcessingJob)
            .where(ProcessingJob.id.in_(claimed_ids))
            .order_by(ProcessingJob.priority.desc(), ProcessingJob.visible_at.asc())
            .execution_options(populate_existing=True)
        )
        jobs = list(rows.scalars().all())
        logger.info("Claimed %d of %d candidate jobs", len(jobs), len(candidate_ids))
        return jobs

    async def try_claim(self, job_id: uuid.UUID, now: Optional[datetime] = None) -> bool:
        """Compare-and-set a single job into `processing`. False if another claimant won."""
        now = now or self._clock()
        result = await self.db.execute(
            update(ProcessingJob)
            .where(
                and_(
                    ProcessingJob.id == job_id,
                    ProcessingJob.status.in_(CLAIMABLE_STATUSES),
                    ProcessingJob.visible_at <= now,
                    ProcessingJob.attempts < ProcessingJob.max_attempts,
                )
            )
            .values(
                status=STATUS_PROCESSING,
                attempts=ProcessingJob.attempts + 1,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def complete(
        self,
        job_id: uuid.UUID,
        result: Optional[dict] = None,
        attempt: Optional[int] = None,
    ) -> bool:
        """
        Mark a processing job completed with its result payload. Commits.
        With `attempt`, only the claimant holding that attempt may finalize.
        """
        now = self._clock()
        outcome = await self.db.execute(
            update(ProcessingJob)
            .where(_held_by(job_id, attempt))
            .values(
                status=STATUS_COMPLETED,
                result_data=result,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if outcome.rowcount != 1:
            logger.warning(
                "Complete ignored, job not processing under attempt %s: id=%s",
                attempt, str(job_id)[:8],
            )
            return False
        logger.info("Job completed: id=%s", str(job_id)[:8])
        return True

    async def fail_or_retry(
        self,
        job_id: uuid.UUID,
        error: str,
        attempt: Optional[int] = None,
    ) -> Optional[str]:
        """
        Record a failed attempt. Schedules a retry with backoff while attempts
        remain, otherwise marks the job permanently failed. Commits.

        Only a job still in `processing` (under `attempt`, when given) is
        finalized. Returns the new status, or None if the job is gone or
        another claimant or finalizer got there first.
        """
        now = self._clock()
        job = await self._load(job_id)
        if job is None:
            logger.warning("fail_or_retry: job not found id=%s", str(job_id)[:8])
            return None

        held_attempt = job.attempts if attempt is None else attempt
        max_attempts, activity_id, seen_status = job.max_attempts, job.activity_id, job.status
        error_message = (error or "")[:MAX_ERROR_LENGTH]
        values = {"error_message": error_message, "updated_at": now}

        if held_attempt < max_attempts:
            delay = backoff_delay(held_attempt)
            values.update(status=STATUS_RETRY, visible_at=now + delay)
        else:
            values.update(status=STATUS_FAILED, completed_at=now)

        outcome = await self.db.execute(
            update(ProcessingJob)
            .where(_held_by(job_id, held_attempt))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if outcome.rowcount != 1:
            logger.warning(
                "fail_or_retry ignored, job not processing under attempt %d: id=%s status=%s",
                held_attempt, str(job_id)[:8], seen_status,
            )
            return None

        if values["status"] == STATUS_RETRY:
            logger.warning(
                "Job retry %d/%d: id=%s activity=%s backoff=%dm error=%s",
                held_attempt, max_attempts, str(job_id)[:8],
                activity_id, int(delay.total_seconds() // 60), error_message[:200],
            )
        else:
            logger.error(
                "Job failed (max attempts): id=%s activity=%s attempts=%d error=%s",
                str(job_id)[:8], activity_id, held_attempt, error_message[:200],
            )
        return values["status"]

    async def requeue(self, job_id: uuid.UUID) -> bool:
        """Give a failed job a fresh attempt budget (manual reprocessing). Commits."""
        job = await self._load(job_id)
        if job is None or job.status != STATUS_FAILED:
            return False

        job.status = STATUS_PENDING
        job.attempts = 0
        job.visible_at = self._clock()
        job.completed_at = None
        await self.db.commit()
        logger.info("Job requeued: id=%s activity=%s", str(job.id)[:8], job.activity_id)
        return True

    async def reclaim_stale(self, lease_minutes: int = STALE_LEASE_MINUTES) -> int:
        """
        Count an attempt against jobs stuck in `processing` longer than the lease
        (claimant crashed before finalizing) so they re-enter the retry cycle.
        """
        cutoff = self._clock() - timedelta(minutes=lease_minutes)
        result = await self.db.execute(
            select(ProcessingJob.id, ProcessingJob.attempts).where(
                and_(
                    ProcessingJob.status == STATUS_PROCESSING,
                    ProcessingJob.started_at < cutoff,
                )
            )
        )
        stale = list(result.all())
        reclaimed = 0
        for job_id, attempt in stale:
            status = await self.fail_or_retry(
                job_id, f"Processing lease expired after {lease_minutes} minutes", attempt=attempt,
            )
            if status is not None:
                reclaimed += 1
        if reclaimed:
            logger.warning("Reclaimed %d stale processing jobs", reclaimed)
        return reclaimed

    async def cleanup(self, older_than_days: int = 30) -> int:
        """Delete terminal jobs that finished more than `older_than_days` ago. Commits."""
        cutoff = self._clock() - timedelta(days=older_than_days)
        result = await self.db.execute(
            delete(ProcessingJob)
            .where(
                and_(
                    ProcessingJob.status.in_(TERMINAL_STATUSES),
                    ProcessingJob.completed_at < cutoff,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        removed = result.rowcount or 0
        logger.info("Cleaned up %d old jobs (older than %d days)", removed, older_than_days)
        return removed

    async def stats(self) -> dict:
        """Job counts grouped by status, with oldest/newest creation times."""
        result = await self.db.execute(
            select(
                ProcessingJob.status,
                func.count(ProcessingJob.id),
                func.min(ProcessingJob.created_at),
                func.max(ProcessingJob.created_at),
            )
            .group_by(ProcessingJob.status)
            .order_by(ProcessingJob.status)
        )
        by_status = [
            {"status": status, "count": count, "oldest": oldest, "newest": newest}
            for status, count, oldest, newest in result.all()
        ]
        return {
            "total": sum(row["count"] for row in by_status),
            "by_status": by_status,
        }

    async def _load(self, job_id: uuid.UUID) -> Optional[ProcessingJob]:
        result = await self.db.execute(
            select(ProcessingJob)
            .where(ProcessingJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()


async def notify_job_available(job_id: uuid.UUID) -> None:
    """Wake the background processor via Redis. Best-effort: never raises."""
    try:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        await redis.lpush(JOB_NOTIFY_KEY, str(job_id))
    except Exception as e:
        logger.debug("Failed to notify job processor: %s", str(e))
