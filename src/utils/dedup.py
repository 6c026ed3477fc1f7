"""
Webhook redelivery dedup - Redis-based with 30-minute window.
Strava retries deliveries it considers unacknowledged; the same
(object, aspect, event_time) must not enqueue a second job.
"""
import hashlib
import logging

logger = logging.getLogger(__name__)

# Dedup window in seconds (30 minutes)
DEDUP_WINDOW_SECONDS = 1800

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from src.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


def make_dedup_key(object_type: str, object_id: int, aspect_type: str, event_time: int) -> str:
    """
    Key for one provider event. Uses SHA-256 hash for consistent key length.
    """
    raw = f"{object_type}:{object_id}:{aspect_type}:{event_time}"
    hash_val = hashlib.sha256(raw.encode()).hexdigest()[:16]
    return f"trailtune:webhook_dedup:{hash_val}"


async def is_duplicate_delivery(
    object_type: str,
    object_id: int,
    aspect_type: str,
    event_time: int,
) -> bool:
    """
    Check whether this notification was already seen within the window.
    If not, marks it in Redis so later redeliveries are detected.

    Returns True if duplicate, False if new.
    """
    key = make_dedup_key(object_type, object_id, aspect_type, event_time)

    try:
        redis = await get_redis()
        # SET NX = only set if not exists. Returns True if set (new), None if exists (dupe).
        was_set = await redis.set(key, "1", nx=True, ex=DEDUP_WINDOW_SECONDS)
        if was_set:
            return False
        logger.info(
            "Duplicate webhook delivery: %s %s %s at %s",
            object_type, object_id, aspect_type, event_time,
        )
        return True
    except Exception as e:
        # Redis failure should NOT block ingestion - assume not duplicate
        logger.warning("Redis dedup check failed: %s. Assuming not duplicate.", str(e))
        return False


async def release_delivery(
    object_type: str,
    object_id: int,
    aspect_type: str,
    event_time: int,
) -> None:
    """
    Forget a delivery marked by is_duplicate_delivery, so a redelivery of an
    event whose processing rolled back is handled again. Never raises.
    """
    key = make_dedup_key(object_type, object_id, aspect_type, event_time)
    try:
        redis = await get_redis()
        await redis.delete(key)
    except Exception as e:
        logger.warning("Redis dedup release failed: %s", str(e))
