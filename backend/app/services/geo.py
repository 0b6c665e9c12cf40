"""
Orienteer Backend — Geographic Calculations
=============================================

What:  Short-range distance helpers for GPS tracks.
How:   Equirectangular approximation, accurate for the few-metre gaps
       between consecutive GPS fixes.
Who:   QuickRoute decoder post-processing (distance run).

Coordinates are [lat, long] pairs in degrees throughout.
"""

import math
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel

EARTH_RADIUS_M = 6_371_000


class TrackDistance(BaseModel):
    """Running total over a track, with a count of pairs that could not be measured."""
    metres: float = 0.0
    skipped_pairs: int = 0

    @property
    def complete(self) -> bool:
        return self.skipped_pairs == 0

    @property
    def kilometres(self) -> float:
        """Whole metres expressed in km, e.g. 5234.9 m → 5.234."""
        return math.floor(self.metres) / 1000


def _valid_point(point: Optional[Sequence[Optional[float]]]) -> bool:
    if point is None or len(point) < 2:
        return False
    lat, long = point[0], point[1]
    if lat is None or long is None:
        return False
    try:
        lat, long = float(lat), float(long)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat) or math.isnan(long):
        return False
    return abs(lat) <= 90 and abs(long) <= 180


def calculate_distance(
    a: Optional[Sequence[Optional[float]]],
    b: Optional[Sequence[Optional[float]]],
) -> Optional[float]:
    """
    Distance in metres between two nearby points.

    dx = Δlong × cos(mean lat), dy = Δlat, d = R × √(dx² + dy²)

    Returns:
        Metres, or None if either point is missing a coordinate or lies
        outside |lat| ≤ 90, |long| ≤ 180.
    """
    if not (_valid_point(a) and _valid_point(b)):
        return None
    a_lat, a_long = math.radians(float(a[0])), math.radians(float(a[1]))
    b_lat, b_long = math.radians(float(b[0])), math.radians(float(b[1]))
    x = (a_long - b_long) * math.cos((a_lat + b_lat) / 2)
    y = a_lat - b_lat
    return EARTH_RADIUS_M * math.sqrt(x * x + y * y)


def track_distance(points: Iterable[Sequence[Optional[float]]]) -> TrackDistance:
    """
    Sum of pairwise distances along a track.

    A pair with an invalid point is counted in `skipped_pairs` and
    contributes nothing, so one bad fix cannot poison the total.
    """
    result = TrackDistance()
    previous = None
    for point in points:
        if previous is not None:
            delta = calculate_distance(previous, point)
            if delta is None:
                result.skipped_pairs += 1
            else:
                result.metres += delta
        previous = point
    return result

