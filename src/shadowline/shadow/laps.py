"""Lap geometry and timing: distance, sectors, shadow synthesis, interpolation."""

from __future__ import annotations

import bisect
import math
from collections.abc import Sequence

from shadowline.shadow.models import SHADOW_LAP_ID, LapRecord, SectorBoundary, ShadowPoint

EARTH_RADIUS_M = 6_371_000.0


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two lat/lon points (degrees)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def sector_index_at(sectors: Sequence[SectorBoundary], distance: float) -> int:
    """Index of the first sector containing *distance*; the last sector otherwise."""
    for i, sector in enumerate(sectors):
        if sector.contains(distance):
            return i
    return len(sectors) - 1


def compute_sector_times(
    points: Sequence[ShadowPoint],
    sectors: Sequence[SectorBoundary],
    lap_time: float | None = None,
) -> tuple[float, ...]:
    """Time spent in each sector, measured at the first point past its end.

    Sectors whose end was never reached record 0. When *lap_time* is given
    the lap was closed at the start/finish line, so the last sector ends there.
    """
    times = [0.0] * len(sectors)
    last_end_time = 0.0
    for i, sector in enumerate(sectors):
        if lap_time is not None and i == len(sectors) - 1:
            end_time = lap_time
        else:
            end_point = next((p for p in points if p.distance >= sector.end_distance), None)
            if end_point is None:
                continue
            end_time = end_point.elapsed_time
        times[i] = end_time - last_end_time
        last_end_time = end_time
    return tuple(times)


def _best_lap_for_sector(laps: Sequence[LapRecord], index: int) -> LapRecord | None:
    best_time = math.inf
    best_lap: LapRecord | None = None
    for lap in laps:
        if index >= len(lap.sector_times):
            continue
        t = lap.sector_times[index]
        if 0 < t < best_time:
            best_time = t
            best_lap = lap
    return best_lap


def synthesize_shadow_lap(
    laps: Sequence[LapRecord],
    sectors: Sequence[SectorBoundary],
    track_length: float,
) -> LapRecord | None:
    """Build the theoretical-best lap from the fastest recorded time of each sector.

    * no laps → ``None``
    * one lap → that lap, unchanged
    * otherwise each sector's points are taken from the lap that drove it
      fastest and re-timed so the segments join continuously. The lap time is
      the sum of the chosen sector times, not any real lap's time.
    """
    if not laps:
        return None
    if len(laps) == 1:
        return laps[0]

    best_laps = [_best_lap_for_sector(laps, i) for i in range(len(sectors))]

    points: list[ShadowPoint] = []
    accumulated = 0.0
    for sector, source in zip(sectors, best_laps):
        if source is None:
            continue
        segment = [p for p in source.points if sector.contains(p.distance)]
        if not segment:
            continue

        segment_start = segment[0].elapsed_time
        for p in segment:
            points.append(
                ShadowPoint(
                    distance=p.distance,
                    lat=p.lat,
                    lon=p.lon,
                    speed_kmh=p.speed_kmh,
                    heading=p.heading,
                    g_lateral=p.g_lateral,
                    elapsed_time=accumulated + (p.elapsed_time - segment_start),
                    sector_index=p.sector_index,
                )
            )
        accumulated += segment[-1].elapsed_time - segment_start

    sector_times = tuple(
        lap.sector_times[i] if lap is not None else 0.0 for i, lap in enumerate(best_laps)
    )
    theoretical_best = sum(sector_times)

    return LapRecord(
        id=SHADOW_LAP_ID,
        lap_number=-1,
        start_time=0.0,
        end_time=theoretical_best * 1000.0,
        total_distance=track_length,
        lap_time=theoretical_best,
        is_complete=True,
        points=tuple(points),
        sector_times=sector_times,
    )


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def find_point_at_distance(
    points: Sequence[ShadowPoint],
    distance: float,
    distances: Sequence[float] | None = None,
) -> ShadowPoint | None:
    """Interpolate a :class:`ShadowPoint` at *distance* along a distance-sorted lap.

    Queries before the first or past the last point return that end point; a
    query landing exactly on a stored point returns the stored point.
    *distances* may be passed to avoid rebuilding the search key on every call.
    """
    if not points:
        return None
    if distances is None:
        distances = [p.distance for p in points]

    idx = bisect.bisect_right(distances, distance)
    if idx == 0:
        return points[0]
    if idx == len(points):
        return points[-1]

    p1, p2 = points[idx - 1], points[idx]
    if p1.distance == distance or p2.distance == p1.distance:
        return p1

    t = (distance - p1.distance) / (p2.distance - p1.distance)
    return ShadowPoint(
        distance=distance,
        lat=_lerp(p1.lat, p2.lat, t),
        lon=_lerp(p1.lon, p2.lon, t),
        speed_kmh=_lerp(p1.speed_kmh, p2.speed_kmh, t),
        heading=_lerp(p1.heading, p2.heading, t),
        g_lateral=_lerp(p1.g_lateral, p2.g_lateral, t),
        elapsed_time=_lerp(p1.elapsed_time, p2.elapsed_time, t),
        sector_index=p1.sector_index,
    )
