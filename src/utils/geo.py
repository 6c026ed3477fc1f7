"""
Geographic helpers - polyline decoding and great-circle distance.
"""
import logging
import math
from dataclasses import dataclass

import polyline

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371e3


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float


def decode_path(encoded: str) -> tuple[Coordinate, ...]:
    """
    Decode a Google encoded polyline into an immutable coordinate sequence.
    Returns an empty tuple for empty or undecodable input.
    """
    if not encoded:
        return ()
    try:
        points = polyline.decode(encoded)
    except Exception as e:
        logger.warning("Polyline decode failed: %s", str(e))
        return ()
    return tuple(Coordinate(lat=lat, lng=lng) for lat, lng in points)


def encode_path(path) -> str:
    """Encode a coordinate sequence as a polyline string."""
    return polyline.encode([(c.lat, c.lng) for c in path])


def haversine_distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_phi / 2) * math.sin(d_phi / 2)
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) * math.sin(d_lambda / 2)
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def cumulative_distances(path) -> list[float]:
    """Running distance from the first point to each point, starting at 0.0."""
    distances = [0.0] if path else []
    total = 0.0
    for i in range(1, len(path)):
        total += haversine_distance(path[i - 1], path[i])
        distances.append(total)
    return distances
