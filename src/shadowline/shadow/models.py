"""Shadow-line data models."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

ECHO_TRAIL_LENGTH = 100
SHADOW_LAP_ID = "shadow_optimal"


@dataclass(frozen=True)
class ShadowPoint:
    """One lap sample indexed by distance travelled since the start/finish line."""

    distance: float
    """Metres from the start of the lap."""

    lat: float
    lon: float

    speed_kmh: float

    heading: float
    """Degrees."""

    g_lateral: float

    elapsed_time: float
    """Seconds since the lap started."""

    sector_index: int
    """0-based sector containing ``distance`` (-1 when no sectors are configured)."""


@dataclass(frozen=True)
class SectorBoundary:
    """A timing sector covering ``[start_distance, end_distance)`` metres."""

    id: int
    name: str
    start_distance: float
    end_distance: float

    def contains(self, distance: float) -> bool:
        return self.start_distance <= distance < self.end_distance


@dataclass(frozen=True)
class LapRecord:
    """A finished lap.

    ``sector_times[i]`` is 0 when no point of the lap reached the end of
    sector *i*; it means "not recorded", not a zero-second sector.
    """

    id: str
    lap_number: int
    """1-based; -1 for the synthesized shadow lap."""

    start_time: float
    """Epoch ms."""

    end_time: float
    """Epoch ms."""

    total_distance: float
    lap_time: float
    """Seconds."""

    is_complete: bool
    points: tuple[ShadowPoint, ...]
    sector_times: tuple[float, ...]

    @property
    def is_synthetic(self) -> bool:
        return self.lap_number < 0


@dataclass
class TrackConfig:
    """Per-track settings for lap detection and sector timing."""

    start_finish_lat: float
    start_finish_lon: float
    sectors: list[SectorBoundary]
    track_length: float
    start_finish_radius: float = 25.0
    """Metres from the start/finish point that count as a crossing."""
    min_lap_time: float = 30.0
    """Seconds; shorter laps are discarded."""


@dataclass
class ShadowState:
    """Live comparison state published by the engine after every frame."""

    current_lap_id: str | None = None
    shadow_lap_id: str | None = None
    distance_in_lap: float = 0.0
    current_delta: float = 0.0
    """Seconds behind (+) or ahead (-) of the shadow at the same distance."""
    sector_deltas: list[float] = field(default_factory=list)
    shadow_position: ShadowPoint | None = None
    echo_trail_user: deque[ShadowPoint] = field(
        default_factory=lambda: deque(maxlen=ECHO_TRAIL_LENGTH)
    )
    echo_trail_shadow: deque[ShadowPoint] = field(
        default_factory=lambda: deque(maxlen=ECHO_TRAIL_LENGTH)
    )

    def snapshot(self) -> ShadowState:
        """Return a copy that shares no mutable containers with this state."""
        return ShadowState(
            current_lap_id=self.current_lap_id,
            shadow_lap_id=self.shadow_lap_id,
            distance_in_lap=self.distance_in_lap,
            current_delta=self.current_delta,
            sector_deltas=list(self.sector_deltas),
            shadow_position=self.shadow_position,
            echo_trail_user=deque(self.echo_trail_user, maxlen=ECHO_TRAIL_LENGTH),
            echo_trail_shadow=deque(self.echo_trail_shadow, maxlen=ECHO_TRAIL_LENGTH),
        )

    def clear_lap(self, n_sectors: int) -> None:
        """Reset the per-lap fields when a new lap starts."""
        self.distance_in_lap = 0.0
        self.current_delta = 0.0
        self.sector_deltas = [0.0] * n_sectors
        self.echo_trail_user.clear()
        self.echo_trail_shadow.clear()
