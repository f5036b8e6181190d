"""MessageNormalizer — heterogeneous wire messages → TelemetryFrame.

Supported shapes, tried in this order:

1. GPS-daemon fix report (``{"class": "TPV", "mode": 3, ...}``)
2. Flat telemetry JSON (``{"lat": .., "lon": .., "speed": .., "gLat": ..}``)
3. Nested telemetry JSON (``{"gps": {..}, "dynamics": {..}, "inputs": {..}, "engine": {..}}``)
4. Delimited line ``time,lat,lon,alt,speed,climb,track,mode``

This is a best-effort decoder: anything it cannot read is dropped.
"""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from shadowline.telemetry.kinematics import KinematicsEstimator
from shadowline.telemetry.models import TelemetryFrame

_logger = logging.getLogger(__name__)

_MS_TO_KMH = 3.6
_CSV_FIELDS = 8

Message = dict[str, Any]


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite(value: Any) -> float | None:
    """*value* as a finite float, or None (JSON integers may exceed float range)."""
    if not _is_number(value):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _is_coordinate(value: Any) -> bool:
    return _finite(value) is not None


def _first_number(msg: Message, *keys: str, default: float = 0.0) -> float:
    """Return the first finite numeric value found under *keys*, else *default*."""
    for key in keys:
        number = _finite(msg.get(key))
        if number is not None:
            return number
    return default


def _sub_object(msg: Message, key: str) -> Message:
    value = msg.get(key)
    return value if isinstance(value, dict) else {}


def parse_iso_ms(text: str) -> float | None:
    """Parse an ISO-8601 timestamp to epoch ms. Naive times are taken as UTC."""
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp() * 1000.0


def _parse_timestamp(value: Any) -> float | None:
    """Epoch ms from a numeric or ISO-8601 value, or None if unusable."""
    if _is_number(value):
        return _finite(value)
    if isinstance(value, str):
        return parse_iso_ms(value)
    return None


def _pick(msg: Message, key: str, alias: str) -> Any:
    value = msg.get(key)
    return msg.get(alias) if value is None else value


# ---------------------------------------------------------------------------
# Shape tests: which decoder owns a JSON object
# ---------------------------------------------------------------------------


def _is_gps_fix(msg: Message) -> bool:
    return msg.get("class") == "TPV"


def _has_flat_position(msg: Message) -> bool:
    return _is_number(_pick(msg, "lat", "latitude")) and _is_number(_pick(msg, "lon", "longitude"))


def _has_nested_gps(msg: Message) -> bool:
    return isinstance(msg.get("gps"), dict)


def _parse_float(text: str, default: float = 0.0) -> float:
    """Finite float from a delimited field; *default* for blanks, junk, nan and inf."""
    try:
        number = float(text)
    except ValueError:
        return default
    return number if math.isfinite(number) else default


class MessageNormalizer:
    """Decodes raw message text into canonical :class:`TelemetryFrame` objects.

    Each successful decode is assigned the next sequence number. Messages that
    match no known shape, or carry unusable coordinates, return ``None`` and
    leave the sequence counter untouched.

    Args:
        kinematics: Estimator used for formats without measured acceleration.
        clock: Returns the current time in epoch ms; used when a message has
            no timestamp of its own.
    """

    def __init__(
        self,
        kinematics: KinematicsEstimator | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._kinematics = kinematics or KinematicsEstimator()
        self._clock = clock or _wall_clock_ms
        self._seq = 0
        self._json_decoders: tuple[
            tuple[Callable[[Message], bool], Callable[[Message], TelemetryFrame | None]], ...
        ] = (
            (_is_gps_fix, self._from_gps_fix),
            (_has_flat_position, self._from_flat_json),
            (_has_nested_gps, self._from_nested_json),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def last_seq(self) -> int:
        """Sequence number of the most recent decoded frame (0 before any)."""
        return self._seq

    def ingest(self, raw: str) -> TelemetryFrame | None:
        """Decode *raw* message text, returning ``None`` if it is unusable."""
        raw = raw.strip()
        if not raw:
            return None

        try:
            frame = self._decode(raw)
        except Exception:
            _logger.warning("Decoder error, dropping message: %.80s", raw, exc_info=True)
            return None

        if frame is None:
            _logger.debug("Dropped unrecognized message: %.80s", raw)
        return frame

    def reset(self) -> None:
        """Restart sequence numbering and clear the kinematics window."""
        self._seq = 0
        self._kinematics.reset()

    # ------------------------------------------------------------------
    # Decoders
    # ------------------------------------------------------------------

    def _decode(self, raw: str) -> TelemetryFrame | None:
        try:
            msg = json.loads(raw)
        except ValueError:
            return self._from_csv(raw)
        return self._decode_json(msg) if isinstance(msg, dict) else None

    def _decode_json(self, msg: Message) -> TelemetryFrame | None:
        # The first shape that matches owns the message, even if decoding fails.
        for matches, decode in self._json_decoders:
            if matches(msg):
                return decode(msg)
        return None

    def _from_gps_fix(self, msg: Message) -> TelemetryFrame | None:
        mode = msg.get("mode")
        if not _is_number(mode) or mode < 2:
            return None  # no 2D fix yet
        lat, lon = msg.get("lat"), msg.get("lon")
        if not (_is_coordinate(lat) and _is_coordinate(lon)):
            return None

        timestamp = _parse_timestamp(msg.get("time"))
        if timestamp is None:
            timestamp = self._clock()
        speed_kmh = _first_number(msg, "speed") * _MS_TO_KMH
        heading = _first_number(msg, "track")
        g_lat, g_long = self._kinematics.update(timestamp, lat, lon, speed_kmh, heading)

        # GPS-only receivers carry no pedal data; infer it from the derived G.
        throttle = min(100.0, g_long * 150.0) if speed_kmh > 10 and g_long > 0.05 else 0.0
        brake = min(100.0, abs(g_long) * 100.0) if g_long < -0.3 else 0.0
        gear = min(6, max(1, math.floor(speed_kmh / 40) + 1))

        return self._build(
            timestamp=timestamp,
            lat=float(lat),
            lon=float(lon),
            altitude=_first_number(msg, "alt"),
            heading=heading,
            speed_kmh=speed_kmh,
            g_lateral=g_lat,
            g_longitudinal=g_long,
            throttle_pct=throttle,
            brake_pct=brake,
            steering_deg=0.0,
            rpm=0.0,
            gear=gear,
            is_gps_derived=True,
        )

    def _from_flat_json(self, msg: Message) -> TelemetryFrame | None:
        lat = _pick(msg, "lat", "latitude")
        lon = _pick(msg, "lon", "longitude")
        if not (_is_coordinate(lat) and _is_coordinate(lon)):
            return None

        timestamp = _parse_timestamp(msg.get("time"))
        if timestamp is None:
            timestamp = self._clock()
        speed_kmh = _first_number(msg, "speed", "speedKmh")
        heading = _first_number(msg, "track", "heading")

        measured = _is_number(msg.get("gLat")) or _is_number(msg.get("latG"))
        if measured:
            g_lat = _first_number(msg, "gLat", "latG", "gForceLat")
            g_long = _first_number(msg, "gLong", "longG", "gForceLong")
        else:
            g_lat, g_long = self._kinematics.update(timestamp, lat, lon, speed_kmh, heading)

        return self._build(
            timestamp=timestamp,
            lat=float(lat),
            lon=float(lon),
            altitude=_first_number(msg, "alt", "altitude"),
            heading=heading,
            speed_kmh=speed_kmh,
            g_lateral=g_lat,
            g_longitudinal=g_long,
            throttle_pct=_first_number(msg, "throttle", "throttlePct"),
            brake_pct=_first_number(msg, "brake", "brakePct", "brakePos"),
            steering_deg=_first_number(msg, "steering", "steeringDeg"),
            rpm=_first_number(msg, "rpm"),
            gear=int(_first_number(msg, "gear")),
            is_gps_derived=not measured,
        )

    def _from_nested_json(self, msg: Message) -> TelemetryFrame | None:
        gps = _sub_object(msg, "gps")
        lat, lon = gps.get("lat"), gps.get("lon")
        if not (_is_coordinate(lat) and _is_coordinate(lon)):
            return None

        dynamics = _sub_object(msg, "dynamics")
        inputs = _sub_object(msg, "inputs")
        engine = _sub_object(msg, "engine")

        timestamp = _parse_timestamp(msg.get("timestamp"))
        if timestamp is None:
            timestamp = self._clock()

        return self._build(
            timestamp=timestamp,
            lat=float(lat),
            lon=float(lon),
            altitude=_first_number(gps, "alt"),
            heading=_first_number(gps, "heading"),
            speed_kmh=_first_number(dynamics, "speed"),
            g_lateral=_first_number(dynamics, "gLat"),
            g_longitudinal=_first_number(dynamics, "gLong"),
            throttle_pct=_first_number(inputs, "throttle"),
            brake_pct=_first_number(inputs, "brake"),
            steering_deg=_first_number(inputs, "steering"),
            rpm=_first_number(engine, "rpm"),
            gear=int(_first_number(engine, "gear")),
            is_gps_derived=False,
        )

    def _from_csv(self, line: str) -> TelemetryFrame | None:
        # time,lat,lon,alt,speed,climb,track,mode
        parts = [p.strip() for p in line.split(",")]
        if len(parts) < _CSV_FIELDS:
            return None

        timestamp = parse_iso_ms(parts[0])
        if timestamp is None:
            timestamp = _parse_float(parts[0], math.nan)
            if not math.isfinite(timestamp):
                return None

        lat = _parse_float(parts[1], math.nan)
        lon = _parse_float(parts[2], math.nan)
        if not (math.isfinite(lat) and math.isfinite(lon)):
            return None

        speed_kmh = _parse_float(parts[4]) * _MS_TO_KMH
        heading = _parse_float(parts[6])
        g_lat, g_long = self._kinematics.update(timestamp, lat, lon, speed_kmh, heading)

        return self._build(
            timestamp=timestamp,
            lat=lat,
            lon=lon,
            altitude=_parse_float(parts[3]),
            heading=heading,
            speed_kmh=speed_kmh,
            g_lateral=g_lat,
            g_longitudinal=g_long,
            throttle_pct=0.0,
            brake_pct=0.0,
            steering_deg=0.0,
            rpm=0.0,
            gear=0,
            is_gps_derived=True,
        )

    def _build(self, **fields: Any) -> TelemetryFrame:
        self._seq += 1
        return TelemetryFrame(seq=self._seq, **fields)
