"""LiveSession — wires a StreamConnection into a ShadowLineEngine."""

from __future__ import annotations

from collections import deque

from shadowline.config import Settings
from shadowline.shadow.engine import ShadowLineEngine
from shadowline.shadow.models import TrackConfig
from shadowline.telemetry.backoff import FibonacciBackoff
from shadowline.telemetry.connection import StreamConnection
from shadowline.telemetry.models import ConnectionState, TelemetryFrame


class FrameRateMeter:
    """Frames per second over the trailing *window_ms* of frame timestamps."""

    def __init__(self, window_ms: float = 1000.0) -> None:
        self._window_ms = window_ms
        self._stamps: deque[float] = deque()

    def add(self, timestamp: float) -> None:
        self._stamps.append(timestamp)
        while self._stamps and timestamp - self._stamps[0] >= self._window_ms:
            self._stamps.popleft()

    @property
    def rate(self) -> float:
        return len(self._stamps) * 1000.0 / self._window_ms

    def reset(self) -> None:
        self._stamps.clear()


class LiveSession:
    """One telemetry source feeding one shadow-line engine.

    Parameters
    ----------
    connection:
        A :class:`~shadowline.telemetry.connection.StreamConnection`.
    engine:
        A :class:`~shadowline.shadow.engine.ShadowLineEngine`.
    shadow_enabled:
        When False, frames are still tracked but not fed to the engine.
    """

    def __init__(
        self,
        connection: StreamConnection | None = None,
        engine: ShadowLineEngine | None = None,
        shadow_enabled: bool = True,
    ) -> None:
        self.connection = connection or StreamConnection()
        self.engine = engine or ShadowLineEngine()
        self.shadow_enabled = shadow_enabled
        self.latest_frame: TelemetryFrame | None = None
        self._meter = FrameRateMeter()
        self._unsubscribe = self.connection.subscribe(self._on_frame)

    @classmethod
    def from_settings(cls, settings: Settings) -> LiveSession:
        connection = StreamConnection(
            max_retries=settings.max_retries,
            backoff=FibonacciBackoff(settings.backoff_seed_ms, settings.backoff_cap_ms),
        )
        return cls(connection=connection)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def frame_rate(self) -> float:
        """Approximate frames per second over the last second of samples."""
        return self._meter.rate

    def connect(self, endpoint: str) -> None:
        """Subscribe to *endpoint*, clearing the previous source's frame history."""
        if endpoint != self.connection.endpoint:
            self.latest_frame = None
            self._meter.reset()
        self.connection.connect(endpoint)

    def disconnect(self) -> None:
        self.connection.disconnect()

    def pause(self) -> None:
        self.connection.pause()

    def resume(self) -> None:
        self.connection.resume()

    def configure(self, config: TrackConfig) -> None:
        self.engine.configure(config)

    def reset(self) -> None:
        """Clear laps and shadow state; the connection is left as is."""
        self.engine.reset()

    def close(self) -> None:
        """Detach from the connection and shut it down."""
        self._unsubscribe()
        self.connection.disconnect()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_frame(self, frame: TelemetryFrame) -> None:
        self.latest_frame = frame
        self._meter.add(frame.timestamp)
        if self.shadow_enabled:
            self.engine.ingest(frame)
