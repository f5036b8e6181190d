"""KinematicsEstimator — lateral/longitudinal G from a short GPS trajectory."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass

_G = 9.81  # m/s² per g
_MAX_G = 3.0
_MAX_DT_S = 2.0


@dataclass(frozen=True)
class _Sample:
    t: float  # epoch ms
    lat: float
    lon: float
    speed: float  # km/h
    heading: float  # degrees


def normalize_angle(angle: float) -> float:
    """Wrap *angle* (degrees) onto [-180, 180] so deltas take the short way round.

    Non-finite input has no direction and maps to 0.
    """
    if not math.isfinite(angle):
        return 0.0
    return math.remainder(angle, 360.0)


def _clamp(value: float, limit: float) -> float:
    return max(-limit, min(limit, value))


class KinematicsEstimator:
    """Derives accelerations by finite differencing a rolling window of samples.

    The newest sample is compared against the one two positions back rather
    than its immediate predecessor, which halves the noise of 10 Hz GPS.

    Args:
        window: Number of samples kept (10 ≈ one second at 10 Hz).
    """

    def __init__(self, window: int = 10) -> None:
        self._history: deque[_Sample] = deque(maxlen=window)

    def __len__(self) -> int:
        return len(self._history)

    def update(
        self,
        t: float,
        lat: float,
        lon: float,
        speed_kmh: float,
        heading: float,
    ) -> tuple[float, float]:
        """Add a sample and return ``(g_lateral, g_longitudinal)`` for it.

        Returns ``(0.0, 0.0)`` until three samples are buffered, and whenever
        the baseline is out of order or more than two seconds old.
        """
        self._history.append(_Sample(t, lat, lon, speed_kmh, heading))

        if len(self._history) < 3:
            return 0.0, 0.0

        curr = self._history[-1]
        prev = self._history[-3]

        dt = (curr.t - prev.t) / 1000.0
        if dt <= 0 or dt > _MAX_DT_S:
            return 0.0, 0.0

        speed_delta = (curr.speed - prev.speed) / 3.6
        g_long = speed_delta / dt / _G

        heading_rate = math.radians(normalize_angle(curr.heading - prev.heading)) / dt
        g_lat = (curr.speed / 3.6) * heading_rate / _G

        return _clamp(g_lat, _MAX_G), _clamp(g_long, _MAX_G)

    def reset(self) -> None:
        """Forget all buffered samples."""
        self._history.clear()
