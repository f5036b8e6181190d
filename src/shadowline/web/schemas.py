"""Pydantic request/response schemas for the control API."""

from __future__ import annotations

from dataclasses import asdict

from pydantic import BaseModel, Field

from shadowline.shadow.models import LapRecord, ShadowPoint, ShadowState
from shadowline.telemetry.models import TelemetryFrame


class HealthResponse(BaseModel):
    status: str
    version: str


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ConnectRequest(BaseModel):
    endpoint: str = ""


class StartFinish(BaseModel):
    lat: float
    lon: float


class SectorIn(BaseModel):
    id: int
    name: str | None = None
    start: float
    end: float


class ConfigureRequest(BaseModel):
    """Same shape as a JSON track file."""

    start_finish: StartFinish
    track_length: float = Field(gt=0)
    start_finish_radius: float = Field(default=25.0, gt=0)
    min_lap_time: float = Field(default=30.0, ge=0)
    sectors: list[SectorIn]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class FrameOut(BaseModel):
    seq: int
    timestamp: float
    lat: float
    lon: float
    altitude: float
    heading: float
    speed_kmh: float
    g_lateral: float
    g_longitudinal: float
    throttle_pct: float
    brake_pct: float
    steering_deg: float
    rpm: float
    gear: int
    is_gps_derived: bool

    @classmethod
    def from_frame(cls, frame: TelemetryFrame) -> FrameOut:
        return cls(**asdict(frame))


class ShadowPointOut(BaseModel):
    distance: float
    lat: float
    lon: float
    speed_kmh: float
    heading: float
    g_lateral: float
    elapsed_time: float
    sector_index: int

    @classmethod
    def from_point(cls, point: ShadowPoint) -> ShadowPointOut:
        return cls(**asdict(point))


class ShadowStateOut(BaseModel):
    current_lap_id: str | None
    shadow_lap_id: str | None
    distance_in_lap: float
    current_delta: float
    sector_deltas: list[float]
    shadow_position: ShadowPointOut | None

    @classmethod
    def from_state(cls, state: ShadowState) -> ShadowStateOut:
        pos = state.shadow_position
        return cls(
            current_lap_id=state.current_lap_id,
            shadow_lap_id=state.shadow_lap_id,
            distance_in_lap=state.distance_in_lap,
            current_delta=state.current_delta,
            sector_deltas=list(state.sector_deltas),
            shadow_position=ShadowPointOut.from_point(pos) if pos is not None else None,
        )


class StateResponse(BaseModel):
    connection_state: str
    endpoint: str | None
    recovery_attempts: int
    frame_rate: float
    shadow_enabled: bool
    configured: bool
    latest_frame: FrameOut | None
    shadow: ShadowStateOut


class LapSummary(BaseModel):
    id: str
    lap_number: int
    lap_time: float
    total_distance: float
    sector_times: list[float]
    point_count: int
    is_synthetic: bool

    @classmethod
    def from_lap(cls, lap: LapRecord) -> LapSummary:
        return cls(
            id=lap.id,
            lap_number=lap.lap_number,
            lap_time=lap.lap_time,
            total_distance=lap.total_distance,
            sector_times=list(lap.sector_times),
            point_count=len(lap.points),
            is_synthetic=lap.is_synthetic,
        )


class LapsResponse(BaseModel):
    shadow_lap_id: str | None
    laps: list[LapSummary]


class ShadowLapResponse(LapSummary):
    points: list[ShadowPointOut]

    @classmethod
    def from_lap(cls, lap: LapRecord) -> ShadowLapResponse:
        summary = LapSummary.from_lap(lap)
        return cls(
            **summary.model_dump(),
            points=[ShadowPointOut.from_point(p) for p in lap.points],
        )
