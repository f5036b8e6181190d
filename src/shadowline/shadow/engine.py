"""ShadowLineEngine — lap detection, shadow synthesis and live distance-synced delta.

The shadow shows where the driver *should* be at this point on track: both
laps are indexed by distance from the start/finish line, not by time, so the
delta reads as "time lost or gained to get here".
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from shadowline.shadow.laps import (
    compute_sector_times,
    find_point_at_distance,
    haversine,
    sector_index_at,
    synthesize_shadow_lap,
)
from shadowline.shadow.models import LapRecord, ShadowPoint, ShadowState, TrackConfig
from shadowline.telemetry.models import TelemetryFrame

_logger = logging.getLogger(__name__)

CROSSING_COOLDOWN_FRAMES = 50  # ≈ 5 s at 10 Hz

ShadowListener = Callable[[ShadowState], None]
LapCompleteListener = Callable[[LapRecord], None]


@dataclass
class _LapInProgress:
    id: str
    lap_number: int
    start_time: float  # epoch ms
    points: list[ShadowPoint] = field(default_factory=list)
    distance: float = 0.0


class ShadowLineEngine:
    """Turns a stream of :class:`TelemetryFrame` into laps and a live shadow comparison.

    Nothing happens until :meth:`configure` has supplied a start/finish point.
    ``ingest`` performs no I/O and never raises for well-formed frames.
    """

    def __init__(self) -> None:
        self._config: TrackConfig | None = None

        self._completed_laps: list[LapRecord] = []
        self._current_lap: _LapInProgress | None = None
        self._shadow_lap: LapRecord | None = None
        self._shadow_distances: list[float] = []

        self._state = ShadowState()
        self._last_frame: TelemetryFrame | None = None
        self._crossing_cooldown = 0

        self._shadow_listeners: list[ShadowListener] = []
        self._lap_listeners: list[LapCompleteListener] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackConfig | None:
        return self._config

    def configure(self, config: TrackConfig) -> None:
        """Set the track layout. Re-configuring resizes the sector deltas."""
        self._config = config
        self._state.sector_deltas = [0.0] * len(config.sectors)
        _logger.info(
            "Configured track: %d sector(s), %.0f m, start/finish (%.6f, %.6f) r=%.0f m",
            len(config.sectors),
            config.track_length,
            config.start_finish_lat,
            config.start_finish_lon,
            config.start_finish_radius,
        )

    def subscribe(self, listener: ShadowListener) -> Callable[[], None]:
        """Register *listener* for state snapshots; the current state is sent immediately."""
        self._shadow_listeners.append(listener)
        listener(self._state.snapshot())
        return functools.partial(_discard, self._shadow_listeners, listener)

    def on_lap_complete(self, listener: LapCompleteListener) -> Callable[[], None]:
        """Register *listener* for every finalized lap."""
        self._lap_listeners.append(listener)
        return functools.partial(_discard, self._lap_listeners, listener)

    def get_state(self) -> ShadowState:
        """Return a snapshot of the live state."""
        return self._state.snapshot()

    def get_shadow_lap(self) -> LapRecord | None:
        return self._shadow_lap

    def get_completed_laps(self) -> list[LapRecord]:
        return list(self._completed_laps)

    def find_shadow_point_at_distance(self, distance: float) -> ShadowPoint | None:
        """Interpolated shadow-lap sample at *distance* metres, or None without a shadow."""
        if self._shadow_lap is None:
            return None
        return find_point_at_distance(self._shadow_lap.points, distance, self._shadow_distances)

    def ingest(self, frame: TelemetryFrame) -> None:
        """Feed one frame: detect crossings, extend the lap, update the delta."""
        cfg = self._config
        if cfg is None:
            return

        distance_delta = (
            haversine(self._last_frame.lat, self._last_frame.lon, frame.lat, frame.lon)
            if self._last_frame is not None
            else 0.0
        )
        self._last_frame = frame

        dist_to_line = haversine(frame.lat, frame.lon, cfg.start_finish_lat, cfg.start_finish_lon)
        if self._crossing_cooldown > 0:
            self._crossing_cooldown -= 1

        if dist_to_line < cfg.start_finish_radius and self._crossing_cooldown == 0:
            self._handle_crossing(cfg, frame, distance_delta)
            self._crossing_cooldown = CROSSING_COOLDOWN_FRAMES
        elif self._current_lap is not None:
            self._current_lap.distance += distance_delta

        lap = self._current_lap
        if lap is None:
            return

        sector = sector_index_at(cfg.sectors, lap.distance)
        elapsed = (frame.timestamp - lap.start_time) / 1000.0
        point = ShadowPoint(
            distance=lap.distance,
            lat=frame.lat,
            lon=frame.lon,
            speed_kmh=frame.speed_kmh,
            heading=frame.heading,
            g_lateral=frame.g_lateral,
            elapsed_time=elapsed,
            sector_index=sector,
        )
        lap.points.append(point)

        state = self._state
        state.current_lap_id = lap.id
        state.distance_in_lap = lap.distance

        if self._shadow_lap is not None:
            shadow_point = self.find_shadow_point_at_distance(lap.distance)
            state.shadow_position = shadow_point
            if shadow_point is not None:
                state.current_delta = elapsed - shadow_point.elapsed_time
                if 0 <= sector < len(state.sector_deltas):
                    state.sector_deltas[sector] = state.current_delta
                state.echo_trail_shadow.append(shadow_point)
            state.echo_trail_user.append(point)

        self._emit_state()

    def set_shadow_lap(self, lap_id: str) -> bool:
        """Pin completed lap *lap_id* as the comparison target.

        Returns False (and changes nothing) if no completed lap has that id.
        The pin lasts until the next lap completes and the shadow is re-synthesized.
        """
        lap = next((lap for lap in self._completed_laps if lap.id == lap_id), None)
        if lap is None:
            return False
        self._set_shadow(lap)
        self._emit_state()
        return True

    def reset(self) -> None:
        """Forget all laps and live state; keeps the track configuration."""
        self._completed_laps = []
        self._current_lap = None
        self._set_shadow(None)
        self._last_frame = None
        self._crossing_cooldown = 0

        n_sectors = len(self._config.sectors) if self._config is not None else 0
        self._state = ShadowState(sector_deltas=[0.0] * n_sectors)
        self._emit_state()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _handle_crossing(
        self, cfg: TrackConfig, frame: TelemetryFrame, distance_delta: float
    ) -> None:
        lap = self._current_lap

        if lap is not None and lap.points:
            lap_time = (frame.timestamp - lap.start_time) / 1000.0
            if lap_time >= cfg.min_lap_time:
                # The crossing frame closes this lap and also opens the next one.
                lap.distance += distance_delta
                lap.points.append(
                    ShadowPoint(
                        distance=lap.distance,
                        lat=frame.lat,
                        lon=frame.lon,
                        speed_kmh=frame.speed_kmh,
                        heading=frame.heading,
                        g_lateral=frame.g_lateral,
                        elapsed_time=lap_time,
                        sector_index=sector_index_at(cfg.sectors, lap.distance),
                    )
                )
                self._finalize_lap(cfg, lap, frame.timestamp, lap_time)
            else:
                _logger.debug(
                    "Discarding short lap %s (%.1f s < %.1f s)", lap.id, lap_time, cfg.min_lap_time
                )

        lap_number = len(self._completed_laps) + 1
        self._current_lap = _LapInProgress(
            id=f"lap_{int(frame.timestamp)}_{lap_number}",
            lap_number=lap_number,
            start_time=frame.timestamp,
        )
        self._state.clear_lap(len(cfg.sectors))

    def _finalize_lap(
        self, cfg: TrackConfig, lap: _LapInProgress, end_time: float, lap_time: float
    ) -> None:
        record = LapRecord(
            id=lap.id,
            lap_number=lap.lap_number,
            start_time=lap.start_time,
            end_time=end_time,
            total_distance=lap.distance,
            lap_time=lap_time,
            is_complete=True,
            points=tuple(lap.points),
            sector_times=compute_sector_times(lap.points, cfg.sectors, lap_time=lap_time),
        )
        self._completed_laps.append(record)
        _logger.info(
            "Lap %d complete: %.3f s over %.0f m, sectors %s",
            record.lap_number,
            record.lap_time,
            record.total_distance,
            [round(t, 3) for t in record.sector_times],
        )

        for listener in list(self._lap_listeners):
            listener(record)

        shadow = synthesize_shadow_lap(self._completed_laps, cfg.sectors, cfg.track_length)
        self._set_shadow(shadow)
        if shadow is not None:
            _logger.info("Shadow lap %s: %.3f s", shadow.id, shadow.lap_time)

    def _set_shadow(self, lap: LapRecord | None) -> None:
        self._shadow_lap = lap
        self._shadow_distances = [p.distance for p in lap.points] if lap is not None else []
        self._state.shadow_lap_id = lap.id if lap is not None else None

    def _emit_state(self) -> None:
        for listener in list(self._shadow_listeners):
            listener(self._state.snapshot())


def _discard(listeners: list, listener: Callable) -> None:
    if listener in listeners:
        listeners.remove(listener)
