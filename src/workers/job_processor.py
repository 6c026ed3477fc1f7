"""
Job processor - claims batches from the processing_jobs queue and executes them.

Each invocation is stateless: claim a bounded batch atomically, run the jobs one
after another, and always finalize every claimed job as completed or
failed/retried. Invocations may run concurrently (HTTP trigger, cron, CLI,
background loop); the atomic claim is the only coordination between them.

The optional background loop uses BRPOP on a Redis notification key for
near-instant wake on new jobs, with a 30-second timeout falling back to DB poll.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.database import async_session_factory
from src.errors import EmptyPath
from src.integrations.spotify import get_spotify_client
from src.integrations.strava import get_strava_client, RUN_ACTIVITY_TYPES
from src.models.auth_token import PROVIDER_SPOTIFY, PROVIDER_STRAVA
from src.models.processing_job import ProcessingJob, JOB_TYPE_MAP_ACTIVITY
from src.services.activity_store import upsert_activity, upsert_activity_songs
from src.services.job_queue import JobQueue, JOB_NOTIFY_KEY
from src.services.route_mapper import PaceSegment, TimedEvent, map_events
from src.services.token_manager import get_token_manager
from src.utils.geo import decode_path

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30  # Fallback DB poll interval
BRPOP_TIMEOUT = 30  # seconds to wait for Redis notification
DEFAULT_BATCH_SIZE = 10
EVENT_LEAD_TIME_MINUTES = 30

SessionFactory = Callable[[], AsyncSession]


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from src.utils.dedup import get_redis
        redis = await get_redis()
        await redis.set("trailtune:worker_health:job_processor", datetime.now(timezone.utc).isoformat(), ex=120)
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def run_job_processor(batch_size: int = DEFAULT_BATCH_SIZE):
    """Main loop - wait for notification or poll every 30s."""
    logger.info("Job processor started (adaptive polling, BRPOP %ds timeout)", BRPOP_TIMEOUT)

    while True:
        try:
            await process_pending_jobs(batch_size)
        except Exception as e:
            logger.error("Job processor cycle error: %s", str(e))

        await _heartbeat()

        try:
            from src.utils.dedup import get_redis
            redis = await get_redis()
            result = await redis.brpop(JOB_NOTIFY_KEY, timeout=BRPOP_TIMEOUT)
            if result:
                # Drain any additional notifications to avoid stacking
                while await redis.rpop(JOB_NOTIFY_KEY):
                    pass
        except Exception as e:
            logger.debug("Redis BRPOP unavailable, falling back to sleep: %s", str(e))
            await asyncio.sleep(POLL_INTERVAL_SECONDS)


async def process_pending_jobs(
    limit: int = DEFAULT_BATCH_SIZE,
    session_factory: Optional[SessionFactory] = None,
) -> int:
    """
    Claim up to `limit` due jobs and execute them sequentially.
    Returns the number of jobs claimed and finalized.
    """
    session_factory = session_factory or async_session_factory

    async with session_factory() as db:
        queue = JobQueue(db)
        await queue.reclaim_stale()
        jobs = await queue.claim_batch(limit)

    if not jobs:
        return 0

    logger.info("Processing %d claimed jobs", len(jobs))

    processed = 0
    for job in jobs:
        try:
            await execute_job(job, session_factory)
            processed += 1
        except Exception as e:
            # Finalization itself failed (e.g. database unreachable); the job
            # is recovered by reclaim_stale once its lease expires.
            logger.error("Failed to finalize job %s: %s", str(job.id)[:8], str(e))
    return processed


async def execute_job(job: ProcessingJob, session_factory: SessionFactory) -> Optional[str]:
    """
    Run one claimed job and finalize it. Work happens in its own session, so
    any partial writes of a failed attempt are rolled back and the next
    attempt starts from scratch.

    Finalization is keyed to the attempt this claim holds; if the lease was
    reclaimed in the meantime the outcome is dropped. Returns the job's final
    status, or None when the claim was lost.
    """
    attempt = job.attempts
    try:
        async with session_factory() as db:
            result = await _dispatch_job(db, job)
            await db.commit()
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.warning(
            "Job attempt failed: id=%s type=%s attempt=%d error=%s",
            str(job.id)[:8], job.job_type, attempt, error_msg,
        )
        async with session_factory() as db:
            return await JobQueue(db).fail_or_retry(job.id, error_msg, attempt=attempt)

    async with session_factory() as db:
        if not await JobQueue(db).complete(job.id, result, attempt=attempt):
            return None
    return "completed"


async def _dispatch_job(db: AsyncSession, job: ProcessingJob) -> dict:
    """
    Route job to its handler function.
    Each handler receives the session and job and returns a result dict.
    """
    handlers = {
        JOB_TYPE_MAP_ACTIVITY: _handle_map_activity,
    }

    handler = handlers.get(job.job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job.job_type}")

    return await handler(db, job)


async def _handle_map_activity(db: AsyncSession, job: ProcessingJob) -> dict:
    """Fetch the run and the songs played around it, map songs onto the route, store both."""
    from src.config import get_settings
    settings = get_settings()

    logger.info("Processing activity %s for user %s", job.activity_id, str(job.user_id)[:8])

    # Refreshed tokens are committed right away: Strava rotates refresh
    # tokens, so they must survive a later failure in this attempt.
    tokens = await get_token_manager().get_valid_tokens(db, job.user_id)
    await db.commit()

    activity = await get_strava_client().get_activity(tokens[PROVIDER_STRAVA], job.activity_id)

    if activity.get("type") not in RUN_ACTIVITY_TYPES:
        logger.info("Activity %s is not a run, skipping", job.activity_id)
        return {"status": "skipped", "reason": "not a run", "songs_mapped": 0}

    activity_map = activity.get("map") or {}
    encoded = activity_map.get("polyline") or activity_map.get("summary_polyline")
    if not encoded:
        logger.info("Activity %s has no polyline data, skipping", job.activity_id)
        return {"status": "skipped", "reason": "no polyline", "songs_mapped": 0}

    path = decode_path(encoded)
    if not path:
        raise EmptyPath(f"Polyline for activity {job.activity_id} decoded to no points")

    start = parse_timestamp(activity["start_date"])
    elapsed_time = int(activity.get("elapsed_time") or 0)

    fetch_from = start - timedelta(minutes=settings.event_lead_time_minutes)
    items = await get_spotify_client().get_recently_played(
        tokens[PROVIDER_SPOTIFY],
        after_ms=int(fetch_from.timestamp() * 1000),
    )
    logger.info("Found %d songs played around activity %s", len(items), job.activity_id)

    splits = activity.get("splits_metric") or []
    mapped = map_events(
        events=[song_to_event(item) for item in items],
        path_start=start,
        path_duration=elapsed_time,
        path=path,
        pace_segments=[
            PaceSegment(distance=float(s.get("distance") or 0), elapsed_time=float(s.get("elapsed_time") or 0))
            for s in splits
        ],
    )
    logger.info("Mapped %d of %d songs to route", len(mapped), len(items))

    activity_row_id = await upsert_activity(
        db,
        user_id=job.user_id,
        strava_activity_id=job.activity_id,
        name=activity.get("name") or "",
        start_date=start,
        elapsed_time=elapsed_time,
        distance=activity.get("distance"),
        polyline=encoded,
        coordinates=[[c.lat, c.lng] for c in path],
        splits_metric=splits,
    )
    stored = await upsert_activity_songs(db, activity_row_id, mapped)

    return {
        "status": "mapped",
        "activity_id": str(activity_row_id),
        "songs_fetched": len(items),
        "songs_mapped": stored,
        "coordinates_count": len(path),
    }


def song_to_event(item: dict) -> TimedEvent:
    """Convert a Spotify recently-played item into a TimedEvent."""
    track = item.get("track") or {}
    album = track.get("album") or {}
    images = album.get("images") or []
    return TimedEvent(
        external_id=track.get("id") or "",
        timestamp=parse_timestamp(item["played_at"]),
        metadata={
            "track_name": track.get("name"),
            "artist_name": ", ".join(a.get("name", "") for a in track.get("artists") or []),
            "album_name": album.get("name"),
            "album_art_url": images[0].get("url") if images else None,
            "spotify_url": (track.get("external_urls") or {}).get("spotify"),
        },
    )


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (with trailing Z) into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
