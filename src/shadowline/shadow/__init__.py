"""Lap detection, theoretical-best lap synthesis and live delta."""

from shadowline.shadow.engine import ShadowLineEngine
from shadowline.shadow.laps import (
    compute_sector_times,
    find_point_at_distance,
    haversine,
    sector_index_at,
    synthesize_shadow_lap,
)
from shadowline.shadow.models import (
    LapRecord,
    SectorBoundary,
    ShadowPoint,
    ShadowState,
    TrackConfig,
)

__all__ = [
    "LapRecord",
    "SectorBoundary",
    "ShadowLineEngine",
    "ShadowPoint",
    "ShadowState",
    "TrackConfig",
    "compute_sector_times",
    "find_point_at_distance",
    "haversine",
    "sector_index_at",
    "synthesize_shadow_lap",
]
