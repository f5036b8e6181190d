"""FastAPI control surface over one LiveSession.

Serve with ``uvicorn shadowline.web.app:app`` or ``scripts/serve.py``.
"""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from shadowline.config import Settings, load_track_config, track_config_from_dict
from shadowline.live.session import LiveSession
from shadowline.web.schemas import (
    ConfigureRequest,
    ConnectRequest,
    FrameOut,
    HealthResponse,
    LapsResponse,
    LapSummary,
    ShadowLapResponse,
    ShadowStateOut,
    StateResponse,
)

load_dotenv()  # loads .env from project root; must run before env vars are consumed

_logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _state_response(session: LiveSession) -> StateResponse:
    frame = session.latest_frame
    return StateResponse(
        connection_state=session.state.value,
        endpoint=session.connection.endpoint,
        recovery_attempts=session.connection.recovery_attempts,
        frame_rate=session.frame_rate,
        shadow_enabled=session.shadow_enabled,
        configured=session.engine.config is not None,
        latest_frame=FrameOut.from_frame(frame) if frame is not None else None,
        shadow=ShadowStateOut.from_state(session.engine.get_state()),
    )


def create_app(session: LiveSession | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the API around *session*; one is created from *settings* when omitted."""
    settings = settings or Settings.from_env()
    if session is None:
        session = LiveSession.from_settings(settings)
        if settings.track_file:
            session.configure(load_track_config(settings.track_file))
            _logger.info("Loaded track file %s", settings.track_file)

    api = FastAPI(title="Shadow Line", version=VERSION)
    api.state.session = session
    api.state.settings = settings

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @api.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", version=VERSION)

    @api.get("/api/state", response_model=StateResponse)
    def get_state() -> StateResponse:
        return _state_response(session)

    @api.post("/api/connect", response_model=StateResponse)
    def connect(req: ConnectRequest) -> StateResponse:
        """Connect to *endpoint*, or to ``SHADOWLINE_ENDPOINT`` when none is given."""
        endpoint = req.endpoint or settings.endpoint
        if not endpoint:
            raise HTTPException(status_code=422, detail="No endpoint given or configured")
        session.connect(endpoint)
        return _state_response(session)

    @api.post("/api/disconnect", response_model=StateResponse)
    def disconnect() -> StateResponse:
        session.disconnect()
        return _state_response(session)

    @api.post("/api/pause", response_model=StateResponse)
    def pause() -> StateResponse:
        session.pause()
        return _state_response(session)

    @api.post("/api/resume", response_model=StateResponse)
    def resume() -> StateResponse:
        session.resume()
        return _state_response(session)

    @api.post("/api/configure", response_model=StateResponse)
    def configure(req: ConfigureRequest) -> StateResponse:
        try:
            config = track_config_from_dict(req.model_dump(exclude_none=True))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        session.configure(config)
        return _state_response(session)

    @api.post("/api/reset", response_model=StateResponse)
    def reset() -> StateResponse:
        session.reset()
        return _state_response(session)

    @api.get("/api/laps", response_model=LapsResponse)
    def list_laps() -> LapsResponse:
        """Completed laps in the order they were driven."""
        shadow = session.engine.get_shadow_lap()
        return LapsResponse(
            shadow_lap_id=shadow.id if shadow is not None else None,
            laps=[LapSummary.from_lap(lap) for lap in session.engine.get_completed_laps()],
        )

    @api.get("/api/shadow", response_model=ShadowLapResponse)
    def get_shadow() -> ShadowLapResponse:
        shadow = session.engine.get_shadow_lap()
        if shadow is None:
            raise HTTPException(status_code=404, detail="No shadow lap yet")
        return ShadowLapResponse.from_lap(shadow)

    @api.post("/api/shadow/{lap_id}", response_model=LapSummary)
    def pin_shadow(lap_id: str) -> LapSummary:
        """Use completed lap *lap_id* as the shadow until the next lap completes."""
        pinned = session.engine.set_shadow_lap(lap_id)
        shadow = session.engine.get_shadow_lap() if pinned else None
        if shadow is None:
            raise HTTPException(status_code=404, detail="Lap not found")
        return LapSummary.from_lap(shadow)

    return api


app = create_app()
