"""
Tests for src/workers/job_processor.py - batch processing, finalization,
the activity mapping handler, and Spotify item conversion.
"""
import uuid
from contextlib import ExitStack
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select, update

from src.errors import MissingCredential, UpstreamError
from src.models.activity import Activity, ActivitySong
from src.models.processing_job import ProcessingJob
from src.services.job_queue import JobQueue
from src.utils.geo import Coordinate, encode_path
from src.workers.job_processor import (
    _dispatch_job,
    _heartbeat,
    execute_job,
    parse_timestamp,
    process_pending_jobs,
    song_to_event,
)

ACTIVITY_ID = 1360128428
ROUTE = [Coordinate(0.0, lng) for lng in (0.0, 0.25, 0.5, 0.75, 1.0)]


def _strava_activity(**overrides) -> dict:
    activity = {
        "id": ACTIVITY_ID,
        "name": "Morning Run",
        "type": "Run",
        "start_date": "2024-06-01T09:00:00Z",
        "elapsed_time": 1800,
        "distance": 5000.0,
        "map": {"polyline": encode_path(ROUTE), "summary_polyline": ""},
        "splits_metric": [],
    }
    activity.update(overrides)
    return activity


def _played(track_id: str, played_at: str) -> dict:
    return {
        "played_at": played_at,
        "track": {
            "id": track_id,
            "name": f"Song {track_id}",
            "artists": [{"name": "Artist One"}, {"name": "Artist Two"}],
            "album": {"name": "Album", "images": [{"url": "https://i.scdn.co/image/big"}]},
            "external_urls": {"spotify": f"https://open.spotify.com/track/{track_id}"},
        },
    }


class Upstreams:
    """Patches the token manager and both API clients used by the handler."""

    def __init__(self, activity=None, played=None, activity_error=None, token_error=None):
        self.tokens = MagicMock()
        self.tokens.get_valid_tokens = AsyncMock(
            return_value={"strava": "strava_token", "spotify": "spotify_token"},
            side_effect=token_error,
        )
        self.strava = MagicMock()
        self.strava.get_activity = AsyncMock(
            return_value=activity if activity is not None else _strava_activity(),
            side_effect=activity_error,
        )
        self.spotify = MagicMock()
        self.spotify.get_recently_played = AsyncMock(return_value=played or [])
        self._stack = ExitStack()

    def __enter__(self):
        self._stack.enter_context(patch("src.workers.job_processor.get_token_manager", return_value=self.tokens))
        self._stack.enter_context(patch("src.workers.job_processor.get_strava_client", return_value=self.strava))
        self._stack.enter_context(patch("src.workers.job_processor.get_spotify_client", return_value=self.spotify))
        return self

    def __exit__(self, *exc):
        self._stack.close()
        return False


async def _enqueue(session_factory, user, **kwargs) -> uuid.UUID:
    async with session_factory() as s:
        job = await JobQueue(s).enqueue(user_id=user.id, activity_id=ACTIVITY_ID, **kwargs)
        await s.commit()
        return job.id


async def _load_job(session_factory, job_id) -> ProcessingJob:
    async with session_factory() as s:
        return (await s.execute(select(ProcessingJob).where(ProcessingJob.id == job_id))).scalar_one()


class TestProcessPendingJobs:
    async def test_maps_songs_onto_route(self, session_factory, user):
        """09:00-09:30 run, song at 09:15 lands mid-route, song at 08:29 is dropped."""
        job_id = await _enqueue(session_factory, user)
        played = [
            _played("mid", "2024-06-01T09:15:00.000Z"),
            _played("early", "2024-06-01T08:29:00.000Z"),
        ]

        with Upstreams(played=played) as up:
            processed = await process_pending_jobs(10, session_factory=session_factory)

        assert processed == 1
        job = await _load_job(session_factory, job_id)
        assert job.status == "completed"
        assert job.attempts == 1
        assert job.result_data["status"] == "mapped"
        assert job.result_data["songs_fetched"] == 2
        assert job.result_data["songs_mapped"] == 1
        assert job.result_data["coordinates_count"] == 5

        async with session_factory() as s:
            activity = (await s.execute(select(Activity))).scalar_one()
            songs = (await s.execute(select(ActivitySong))).scalars().all()
        assert activity.strava_activity_id == ACTIVITY_ID
        assert activity.user_id == user.id
        assert len(activity.coordinates) == 5
        assert len(songs) == 1
        assert songs[0].spotify_track_id == "mid"
        assert songs[0].percentage_complete == 0.5
        assert songs[0].coordinate_index == 2
        assert (songs[0].latitude, songs[0].longitude) == (0.0, 0.5)
        assert songs[0].artist_name == "Artist One, Artist Two"

        up.strava.get_activity.assert_awaited_once_with("strava_token", ACTIVITY_ID)
        after_ms = up.spotify.get_recently_played.await_args.kwargs["after_ms"]
        assert after_ms == int(datetime(2024, 6, 1, 8, 30, tzinfo=timezone.utc).timestamp() * 1000)

    async def test_reprocessing_is_idempotent(self, session_factory, user):
        played = [_played("mid", "2024-06-01T09:15:00Z")]
        first = await _enqueue(session_factory, user)
        with Upstreams(played=played):
            await process_pending_jobs(10, session_factory=session_factory)
        second = await _enqueue(session_factory, user)
        with Upstreams(played=played):
            await process_pending_jobs(10, session_factory=session_factory)

        assert (await _load_job(session_factory, first)).status == "completed"
        assert (await _load_job(session_factory, second)).status == "completed"
        async with session_factory() as s:
            assert len((await s.execute(select(Activity))).scalars().all()) == 1
            assert len((await s.execute(select(ActivitySong))).scalars().all()) == 1

    async def test_nothing_to_do(self, session_factory):
        assert await process_pending_jobs(10, session_factory=session_factory) == 0

    async def test_upstream_failure_schedules_retry(self, session_factory, user):
        job_id = await _enqueue(session_factory, user)
        error = UpstreamError("strava API error 503", provider="strava", status_code=503)

        with Upstreams(activity_error=error):
            await process_pending_jobs(10, session_factory=session_factory)

        job = await _load_job(session_factory, job_id)
        assert job.status == "retry"
        assert job.error_message.startswith("UpstreamError: ")
        async with session_factory() as s:
            assert (await s.execute(select(Activity))).scalars().all() == []

    async def test_missing_credentials_consume_attempts(self, session_factory, user):
        job_id = await _enqueue(session_factory, user, max_attempts=1)
        error = MissingCredential("No spotify credential", user_id=user.id, provider="spotify")

        with Upstreams(token_error=error):
            await process_pending_jobs(10, session_factory=session_factory)

        job = await _load_job(session_factory, job_id)
        assert job.status == "failed"
        assert "MissingCredential" in job.error_message

    async def test_non_run_is_completed_as_skipped(self, session_factory, user):
        job_id = await _enqueue(session_factory, user)

        with Upstreams(activity=_strava_activity(type="Ride")) as up:
            await process_pending_jobs(10, session_factory=session_factory)

        job = await _load_job(session_factory, job_id)
        assert job.status == "completed"
        assert job.result_data == {"status": "skipped", "reason": "not a run", "songs_mapped": 0}
        up.spotify.get_recently_played.assert_not_awaited()

    async def test_activity_without_polyline_is_skipped(self, session_factory, user):
        job_id = await _enqueue(session_factory, user)

        with Upstreams(activity=_strava_activity(map={"polyline": None, "summary_polyline": None})):
            await process_pending_jobs(10, session_factory=session_factory)

        job = await _load_job(session_factory, job_id)
        assert job.result_data["reason"] == "no polyline"

    async def test_falls_back_to_summary_polyline(self, session_factory, user):
        job_id = await _enqueue(session_factory, user)
        activity = _strava_activity(map={"polyline": None, "summary_polyline": encode_path(ROUTE[::2])})

        with Upstreams(activity=activity):
            await process_pending_jobs(10, session_factory=session_factory)

        job = await _load_job(session_factory, job_id)
        assert job.result_data["coordinates_count"] == 3

    async def test_zero_duration_fails_attempt(self, session_factory, user):
        job_id = await _enqueue(session_factory, user)

        with Upstreams(activity=_strava_activity(elapsed_time=0)):
            await process_pending_jobs(10, session_factory=session_factory)

        job = await _load_job(session_factory, job_id)
        assert job.status == "retry"
        assert job.error_message.startswith("ZeroDuration")

    async def test_uses_splits_for_pace(self, session_factory, user):
        """Fast first split: a third of the time covers three quarters of the distance."""
        job_id = await _enqueue(session_factory, user)
        activity = _strava_activity(splits_metric=[
            {"distance": 3000.0, "elapsed_time": 600},
            {"distance": 1000.0, "elapsed_time": 1200},
        ])

        with Upstreams(activity=activity, played=[_played("t", "2024-06-01T09:10:00Z")]):
            await process_pending_jobs(10, session_factory=session_factory)

        async with session_factory() as s:
            song = (await s.execute(select(ActivitySong))).scalar_one()
        assert song.percentage_complete == 0.75
        assert (await _load_job(session_factory, job_id)).status == "completed"


class TestExecuteJob:
    async def test_finalize_failure_does_not_stop_batch(self, session_factory, user):
        await _enqueue(session_factory, user)

        with patch("src.workers.job_processor.execute_job", new_callable=AsyncMock) as mock_exec:
            mock_exec.side_effect = RuntimeError("db gone")
            processed = await process_pending_jobs(10, session_factory=session_factory)

        assert processed == 0
        mock_exec.assert_awaited_once()

    async def test_unknown_job_type_fails_attempt(self, session_factory, user):
        job_id = await _enqueue(session_factory, user, job_type="mystery")
        async with session_factory() as s:
            [job] = await JobQueue(s).claim_batch(1)

        status = await execute_job(job, session_factory)

        assert status == "retry"
        stored = await _load_job(session_factory, job_id)
        assert "Unknown job type: mystery" in stored.error_message

    async def test_outcome_dropped_after_lease_taken_over(self, session_factory, user):
        """A claimant whose job was reclaimed and re-claimed must not finalize it."""
        job_id = await _enqueue(session_factory, user, job_type="mystery")
        async with session_factory() as s:
            [stale_claim] = await JobQueue(s).claim_batch(1)
        async with session_factory() as s:
            await s.execute(
                update(ProcessingJob).where(ProcessingJob.id == job_id).values(attempts=2)
            )
            await s.commit()

        status = await execute_job(stale_claim, session_factory)

        assert status is None
        stored = await _load_job(session_factory, job_id)
        assert stored.status == "processing"
        assert stored.attempts == 2
        assert stored.error_message is None


class TestDispatchJob:
    async def test_unknown_type_raises(self):
        job = MagicMock()
        job.job_type = "nope"
        with pytest.raises(ValueError):
            await _dispatch_job(AsyncMock(), job)


class TestHeartbeat:
    async def test_writes_heartbeat_key(self, mock_redis):
        await _heartbeat()
        args, kwargs = mock_redis.set.await_args
        assert args[0] == "trailtune:worker_health:job_processor"
        assert kwargs["ex"] == 120

    async def test_redis_failure_is_swallowed(self):
        with patch("src.utils.dedup.get_redis", side_effect=ConnectionError("down")):
            await _heartbeat()


class TestSongToEvent:
    def test_converts_recently_played_item(self):
        event = song_to_event(_played("abc", "2024-06-01T09:15:00.123Z"))

        assert event.external_id == "abc"
        assert event.timestamp == datetime(2024, 6, 1, 9, 15, 0, 123000, tzinfo=timezone.utc)
        assert event.metadata["album_art_url"] == "https://i.scdn.co/image/big"
        assert event.metadata["spotify_url"] == "https://open.spotify.com/track/abc"

    def test_missing_album_images(self):
        item = _played("abc", "2024-06-01T09:15:00Z")
        item["track"]["album"]["images"] = []
        assert song_to_event(item).metadata["album_art_url"] is None


class TestParseTimestamp:
    def test_z_suffix(self):
        assert parse_timestamp("2024-06-01T09:00:00Z") == datetime(2024, 6, 1, 9, tzinfo=timezone.utc)

    def test_offset_is_normalized_to_utc(self):
        assert parse_timestamp("2024-06-01T11:00:00+02:00") == datetime(2024, 6, 1, 9, tzinfo=timezone.utc)

    def test_naive_is_treated_as_utc(self):
        assert parse_timestamp("2024-06-01T09:00:00").tzinfo == timezone.utc
