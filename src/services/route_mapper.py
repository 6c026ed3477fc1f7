"""
Route mapper - places timestamped events (songs) at positions along a route.

Pure and deterministic: no clock reads, no I/O. Two strategies share one entry
point. Without pace segments, completion is uniform in time. With pace segments
(Strava splits), completion follows distance actually covered in each segment.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from src.errors import EmptyPath, ZeroDuration
from src.utils.geo import Coordinate, cumulative_distances

DISTANCE_TOLERANCE_METERS = 1e-6


@dataclass(frozen=True)
class TimedEvent:
    external_id: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class PaceSegment:
    distance: float  # meters
    elapsed_time: float  # seconds


@dataclass(frozen=True)
class MappedEvent:
    event: TimedEvent
    completion: float  # 0.0 - 1.0
    path_index: int
    coordinate: Coordinate

    @property
    def external_id(self) -> str:
        return self.event.external_id

    @property
    def timestamp(self) -> datetime:
        return self.event.timestamp


def map_events(
    events: Sequence[TimedEvent],
    path_start: datetime,
    path_duration: float,
    path: Sequence[Coordinate],
    pace_segments: Optional[Sequence[PaceSegment]] = None,
) -> list[MappedEvent]:
    """
    Map events onto the path. Events outside [path_start, path_start + duration]
    are dropped; both bounds are inclusive. Output preserves input order.

    Raises:
        EmptyPath: path has no coordinates
        ZeroDuration: path_duration is not positive
    """
    if not path:
        raise EmptyPath("Cannot map events onto an empty path")
    if path_duration <= 0:
        raise ZeroDuration(f"Activity duration must be positive, got {path_duration}")

    window_end = path_start + timedelta(seconds=path_duration)
    distances = cumulative_distances(path)

    mapped = []
    for event in events:
        if event.timestamp < path_start or event.timestamp > window_end:
            continue

        elapsed = (event.timestamp - path_start).total_seconds()
        completion = _clamp(elapsed / path_duration)

        if pace_segments:
            completion = _clamp(pace_completion(elapsed, pace_segments, fallback=completion))

        index = index_at_completion(distances, completion)
        mapped.append(MappedEvent(
            event=event,
            completion=completion,
            path_index=index,
            coordinate=path[index],
        ))

    return mapped


def pace_completion(
    elapsed_seconds: float,
    segments: Sequence[PaceSegment],
    fallback: float = 0.0,
) -> float:
    """
    Fraction of total distance covered after elapsed_seconds, interpolating
    linearly inside the segment that contains that moment. Past the last
    segment the fraction is 1.0. Segments with no distance return fallback.
    """
    total_distance = sum(s.distance for s in segments)
    if total_distance <= 0:
        return fallback

    cumulative_time = 0.0
    cumulative_distance = 0.0
    for segment in segments:
        segment_start = cumulative_time
        cumulative_time += segment.elapsed_time

        if elapsed_seconds <= cumulative_time:
            if segment.elapsed_time > 0:
                time_fraction = (elapsed_seconds - segment_start) / segment.elapsed_time
            else:
                time_fraction = 1.0
            distance_at_event = cumulative_distance + segment.distance * time_fraction
            return distance_at_event / total_distance

        cumulative_distance += segment.distance

    return 1.0


def index_at_completion(distances: Sequence[float], completion: float) -> int:
    """
    First path index whose cumulative distance reaches completion * total.
    Distances within DISTANCE_TOLERANCE_METERS of the target count as reached,
    so summation rounding cannot push an exact match to the next point.
    Falls back to the last index when the target is never reached.
    """
    target = distances[-1] * completion - DISTANCE_TOLERANCE_METERS
    for i, distance in enumerate(distances):
        if distance >= target:
            return i
    return len(distances) - 1


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
