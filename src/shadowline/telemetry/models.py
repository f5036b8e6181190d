"""Telemetry data models."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle of a :class:`~shadowline.telemetry.connection.StreamConnection`."""

    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    PAUSED = "paused"
    RECOVERING = "recovering"
    DEAD = "dead"


@dataclass(frozen=True)
class TelemetryFrame:
    """A single normalized telemetry sample, independent of the wire format."""

    seq: int
    """Sequence number, strictly increasing within one connection lifetime."""

    timestamp: float
    """Capture time in epoch milliseconds."""

    lat: float
    """Latitude in degrees."""

    lon: float
    """Longitude in degrees."""

    altitude: float
    """Altitude in metres."""

    heading: float
    """Course over ground in degrees [0, 360)."""

    speed_kmh: float
    """Vehicle speed in km/h."""

    g_lateral: float
    """Lateral acceleration (g). Positive = turning right."""

    g_longitudinal: float
    """Longitudinal acceleration (g). Positive = accelerating."""

    throttle_pct: float
    """Throttle position [0, 100]."""

    brake_pct: float
    """Brake position [0, 100]."""

    steering_deg: float
    """Steering angle in degrees."""

    rpm: float
    """Engine speed."""

    gear: int
    """Selected gear, 0 when unknown."""

    is_gps_derived: bool
    """True when the accelerations were estimated from the GPS trajectory."""

    def is_valid(self) -> bool:
        """Return True if all float fields are finite (no NaN/Inf)."""
        floats = (
            self.timestamp,
            self.lat,
            self.lon,
            self.altitude,
            self.heading,
            self.speed_kmh,
            self.g_lateral,
            self.g_longitudinal,
            self.throttle_pct,
            self.brake_pct,
            self.steering_deg,
            self.rpm,
        )
        return all(math.isfinite(f) for f in floats)
