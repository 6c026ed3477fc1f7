"""
Activity store - idempotent persistence of mapped activities and songs.

Upserts on natural keys only, so reprocessing an activity updates rows in
place and never changes their surrogate ids:
- activities: (user_id, strava_activity_id)
- activity_songs: (activity_id, spotify_track_id, played_at)
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import upsert_statement
from src.models.activity import Activity, ActivitySong
from src.services.route_mapper import MappedEvent

logger = logging.getLogger(__name__)


async def upsert_activity(
    db: AsyncSession,
    user_id: uuid.UUID,
    strava_activity_id: int,
    name: str,
    start_date: datetime,
    elapsed_time: int,
    distance: float,
    polyline: str,
    coordinates: list,
    splits_metric: list,
) -> uuid.UUID:
    """Insert or update an activity. Returns its (stable) id."""
    values = {
        "name": name,
        "start_date": start_date,
        "elapsed_time": elapsed_time,
        "distance": distance,
        "polyline": polyline,
        "coordinates": coordinates,
        "splits_metric": splits_metric,
    }
    stmt = upsert_statement(db, Activity).values(
        id=uuid.uuid4(),
        user_id=user_id,
        strava_activity_id=strava_activity_id,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "strava_activity_id"],
        set_={**values, "updated_at": datetime.now(timezone.utc)},
    )
    await db.execute(stmt)

    result = await db.execute(
        select(Activity.id).where(
            and_(
                Activity.user_id == user_id,
                Activity.strava_activity_id == strava_activity_id,
            )
        )
    )
    return result.scalar_one()


async def upsert_activity_songs(
    db: AsyncSession,
    activity_id: uuid.UUID,
    mapped: Sequence[MappedEvent],
) -> int:
    """Insert or update each mapped song. Returns the number written."""
    for item in mapped:
        meta = item.event.metadata
        values = {
            "track_name": meta.get("track_name"),
            "artist_name": meta.get("artist_name"),
            "album_name": meta.get("album_name"),
            "album_art_url": meta.get("album_art_url"),
            "spotify_url": meta.get("spotify_url"),
            "percentage_complete": item.completion,
            "latitude": item.coordinate.lat,
            "longitude": item.coordinate.lng,
            "coordinate_index": item.path_index,
        }
        stmt = upsert_statement(db, ActivitySong).values(
            id=uuid.uuid4(),
            activity_id=activity_id,
            spotify_track_id=item.external_id,
            played_at=item.timestamp,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["activity_id", "spotify_track_id", "played_at"],
            set_=values,
        )
        await db.execute(stmt)

    logger.info("Stored %d songs for activity %s", len(mapped), str(activity_id)[:8])
    return len(mapped)
