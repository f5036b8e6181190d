"""MessageNormalizer — wire formats → TelemetryFrame."""

from __future__ import annotations

import json

import pytest

from shadowline.telemetry.models import TelemetryFrame
from shadowline.telemetry.normalizer import MessageNormalizer, parse_iso_ms

T0 = "2024-05-01T12:00:00.000Z"
T0_MS = 1_714_564_800_000.0


@pytest.fixture
def normalizer():
    return MessageNormalizer(clock=lambda: 42_000.0)


def tpv(**kwargs) -> str:
    msg = {
        "class": "TPV",
        "mode": 3,
        "time": T0,
        "lat": 38.1615,
        "lon": -122.454,
        "alt": 12.5,
        "speed": 20.0,
        "track": 90.0,
    }
    msg.update(kwargs)
    return json.dumps(msg)


# ---------------------------------------------------------------------------
# parse_iso_ms
# ---------------------------------------------------------------------------


def test_parse_iso_ms_utc_suffix():
    assert parse_iso_ms(T0) == T0_MS


def test_parse_iso_ms_naive_is_utc():
    assert parse_iso_ms("2024-05-01T12:00:00.250") == T0_MS + 250


def test_parse_iso_ms_rejects_garbage():
    assert parse_iso_ms("not a time") is None


# ---------------------------------------------------------------------------
# GPS-daemon fix reports
# ---------------------------------------------------------------------------


def test_gps_fix_decoded(normalizer):
    frame = normalizer.ingest(tpv())
    assert isinstance(frame, TelemetryFrame)
    assert frame.seq == 1
    assert frame.timestamp == T0_MS
    assert frame.lat == 38.1615
    assert frame.lon == -122.454
    assert frame.altitude == 12.5
    assert frame.speed_kmh == pytest.approx(72.0)
    assert frame.heading == 90.0
    assert frame.is_gps_derived is True


def test_gps_fix_infers_gear_from_speed(normalizer):
    assert normalizer.ingest(tpv(speed=20.0)).gear == 2  # 72 km/h
    assert normalizer.ingest(tpv(speed=0.0)).gear == 1
    assert normalizer.ingest(tpv(speed=100.0)).gear == 6


def test_gps_fix_without_2d_fix_is_dropped(normalizer):
    assert normalizer.ingest(tpv(mode=1)) is None
    assert normalizer.last_seq == 0


def test_gps_fix_without_position_is_dropped(normalizer):
    # must not be picked up by another decoder either
    msg = {"class": "TPV", "mode": 3, "latitude": 38.0, "longitude": -122.0}
    assert normalizer.ingest(json.dumps(msg)) is None


def test_gps_fix_infers_throttle_when_accelerating(normalizer):
    frames = [
        normalizer.ingest(tpv(time=f"2024-05-01T12:00:00.{ms:03d}Z", speed=speed))
        for ms, speed in [(0, 10.0), (100, 12.0), (200, 14.0)]
    ]
    last = frames[-1]
    assert last.g_longitudinal > 0.05
    assert last.throttle_pct == 100.0
    assert last.brake_pct == 0.0


def test_gps_fix_infers_brake_when_decelerating(normalizer):
    frames = [
        normalizer.ingest(tpv(time=f"2024-05-01T12:00:00.{ms:03d}Z", speed=speed))
        for ms, speed in [(0, 14.0), (100, 12.0), (200, 10.0)]
    ]
    last = frames[-1]
    assert last.g_longitudinal < -0.3
    assert last.brake_pct == 100.0
    assert last.throttle_pct == 0.0


# ---------------------------------------------------------------------------
# Flat JSON
# ---------------------------------------------------------------------------


def test_flat_json_with_measured_g(normalizer):
    msg = {
        "time": T0_MS,
        "lat": 38.1615,
        "lon": -122.454,
        "speed": 120.0,
        "heading": 45.0,
        "gLat": 1.2,
        "gLong": -0.5,
        "throttle": 80,
        "brake": 5,
        "steering": -12.0,
        "rpm": 7000,
        "gear": 4,
    }
    frame = normalizer.ingest(json.dumps(msg))
    assert frame.timestamp == T0_MS
    assert frame.speed_kmh == 120.0
    assert frame.heading == 45.0
    assert frame.g_lateral == 1.2
    assert frame.g_longitudinal == -0.5
    assert frame.throttle_pct == 80.0
    assert frame.brake_pct == 5.0
    assert frame.steering_deg == -12.0
    assert frame.rpm == 7000.0
    assert frame.gear == 4
    assert frame.is_gps_derived is False


def test_flat_json_aliases(normalizer):
    msg = {
        "latitude": 38.1,
        "longitude": -122.4,
        "speedKmh": 90.0,
        "track": 180.0,
        "latG": 0.8,
        "longG": 0.1,
        "throttlePct": 50.0,
        "brakePos": 20.0,
        "altitude": 3.0,
    }
    frame = normalizer.ingest(json.dumps(msg))
    assert (frame.lat, frame.lon) == (38.1, -122.4)
    assert frame.speed_kmh == 90.0
    assert frame.heading == 180.0
    assert frame.g_lateral == 0.8
    assert frame.g_longitudinal == 0.1
    assert frame.throttle_pct == 50.0
    assert frame.brake_pct == 20.0
    assert frame.altitude == 3.0


def test_flat_json_null_lat_falls_back_to_alias(normalizer):
    msg = {"lat": None, "latitude": 38.1, "lon": -122.4}
    frame = normalizer.ingest(json.dumps(msg))
    assert frame.lat == 38.1


def test_flat_json_without_g_is_gps_derived(normalizer):
    frame = normalizer.ingest(json.dumps({"lat": 38.1, "lon": -122.4, "speed": 50.0}))
    assert frame.is_gps_derived is True
    assert frame.g_lateral == 0.0
    assert frame.g_longitudinal == 0.0


def test_missing_timestamp_uses_clock(normalizer):
    frame = normalizer.ingest(json.dumps({"lat": 38.1, "lon": -122.4}))
    assert frame.timestamp == 42_000.0


def test_iso_timestamp_in_flat_json(normalizer):
    frame = normalizer.ingest(json.dumps({"time": T0, "lat": 38.1, "lon": -122.4}))
    assert frame.timestamp == T0_MS


def test_boolean_coordinates_rejected(normalizer):
    assert normalizer.ingest(json.dumps({"lat": True, "lon": -122.4})) is None


def test_non_finite_coordinates_rejected(normalizer):
    assert normalizer.ingest('{"lat": NaN, "lon": -122.4}') is None
    assert normalizer.ingest('{"lat": 38.1, "lon": Infinity}') is None


# ---------------------------------------------------------------------------
# Nested JSON
# ---------------------------------------------------------------------------


def test_nested_json(normalizer):
    msg = {
        "timestamp": T0,
        "gps": {"lat": 38.2, "lon": -122.5, "alt": 8.0, "heading": 270.0},
        "dynamics": {"speed": 150.0, "gLat": -1.1, "gLong": 0.3},
        "inputs": {"throttle": 100.0, "brake": 0.0, "steering": 15.0},
        "engine": {"rpm": 8200, "gear": 5},
    }
    frame = normalizer.ingest(json.dumps(msg))
    assert frame.timestamp == T0_MS
    assert (frame.lat, frame.lon, frame.altitude, frame.heading) == (38.2, -122.5, 8.0, 270.0)
    assert frame.speed_kmh == 150.0
    assert frame.g_lateral == -1.1
    assert frame.g_longitudinal == 0.3
    assert frame.throttle_pct == 100.0
    assert frame.steering_deg == 15.0
    assert frame.rpm == 8200.0
    assert frame.gear == 5
    assert frame.is_gps_derived is False


def test_nested_json_missing_sections_default_to_zero(normalizer):
    frame = normalizer.ingest(json.dumps({"gps": {"lat": 38.2, "lon": -122.5}}))
    assert frame.speed_kmh == 0.0
    assert frame.rpm == 0.0
    assert frame.gear == 0


def test_nested_json_without_position_dropped(normalizer):
    assert normalizer.ingest(json.dumps({"gps": {"alt": 3.0}})) is None


# ---------------------------------------------------------------------------
# Delimited lines
# ---------------------------------------------------------------------------


def test_csv_line_iso_time(normalizer):
    frame = normalizer.ingest(f"{T0},38.1615,-122.454,12.0,20.0,0.0,90.0,3")
    assert frame.timestamp == T0_MS
    assert frame.lat == 38.1615
    assert frame.altitude == 12.0
    assert frame.speed_kmh == pytest.approx(72.0)
    assert frame.heading == 90.0
    assert frame.is_gps_derived is True


def test_csv_line_epoch_time(normalizer):
    frame = normalizer.ingest("1714564800000,38.1615,-122.454,12.0,20.0,0.0,90.0,3")
    assert frame.timestamp == T0_MS


def test_csv_line_too_short(normalizer):
    assert normalizer.ingest(f"{T0},38.1615,-122.454,12.0") is None


def test_csv_line_bad_coordinates(normalizer):
    assert normalizer.ingest(f"{T0},north,-122.454,12.0,20.0,0.0,90.0,3") is None


def test_csv_line_bad_time(normalizer):
    assert normalizer.ingest("yesterday,38.1615,-122.454,12.0,20.0,0.0,90.0,3") is None


# ---------------------------------------------------------------------------
# Unusable input and sequencing
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw", ["", "   ", "hello", "[1, 2, 3]", "42", '{"foo": 1}'])
def test_unusable_messages_dropped(normalizer, raw):
    assert normalizer.ingest(raw) is None


def test_sequence_counts_only_successes(normalizer):
    assert normalizer.ingest(tpv()).seq == 1
    assert normalizer.ingest("garbage") is None
    assert normalizer.ingest(tpv(mode=0)) is None
    assert normalizer.ingest(tpv()).seq == 2
    assert normalizer.last_seq == 2


def test_reset_restarts_sequence(normalizer):
    normalizer.ingest(tpv())
    normalizer.ingest(tpv())
    normalizer.reset()
    assert normalizer.last_seq == 0
    assert normalizer.ingest(tpv()).seq == 1


def test_decoded_frames_are_valid(normalizer):
    for raw in (tpv(), f"{T0},38.1,-122.4,1,2,0,3,3", '{"lat": 38.1, "lon": -122.4}'):
        assert normalizer.ingest(raw).is_valid()


# ---------------------------------------------------------------------------
# Extreme but parseable values
# ---------------------------------------------------------------------------

HUGE_INT = "1" + "0" * 400  # parses as a JSON int, too large for a float


def test_huge_heading_does_not_stall_kinematics(normalizer):
    for ms, heading in [(0, 10.0), (100, 20.0), (200, 1e300)]:
        msg = {"time": T0_MS + ms, "lat": 38.1, "lon": -122.4, "heading": heading}
        frame = normalizer.ingest(json.dumps(msg))
    assert frame.seq == 3
    assert -3.0 <= frame.g_lateral <= 3.0


def test_oversized_integer_coordinate_dropped(normalizer):
    assert normalizer.ingest(f'{{"lat": {HUGE_INT}, "lon": 2.0}}') is None
    assert normalizer.ingest(f'{{"gps": {{"lat": {HUGE_INT}, "lon": -122.4}}}}') is None
    assert normalizer.last_seq == 0


def test_oversized_integer_fields_fall_back(normalizer):
    raw = f'{{"time": {HUGE_INT}, "lat": 38.1, "lon": -122.4, "heading": {HUGE_INT}, "rpm": {HUGE_INT}}}'
    frame = normalizer.ingest(raw)
    assert frame.timestamp == 42_000.0
    assert frame.heading == 0.0
    assert frame.rpm == 0.0
    assert frame.is_valid()


def test_oversized_integer_gps_fix_fields(normalizer):
    frame = normalizer.ingest(tpv(time=None).replace('"time": null', f'"time": {HUGE_INT}'))
    assert frame.timestamp == 42_000.0


@pytest.mark.parametrize("track", ["inf", "-inf", "nan", "1e400"])
def test_csv_non_finite_heading_reads_as_zero(normalizer, track):
    for ms in (0, 100, 200):
        frame = normalizer.ingest(f"2024-05-01T12:00:00.{ms:03d}Z,38.1,-122.4,1.0,20.0,0,{track},3")
    assert frame.heading == 0.0
    assert frame.is_valid()


def test_csv_non_finite_speed_and_altitude_read_as_zero(normalizer):
    frame = normalizer.ingest(f"{T0},38.1,-122.4,nan,inf,0,90.0,3")
    assert frame.altitude == 0.0
    assert frame.speed_kmh == 0.0
    assert frame.is_valid()


@pytest.mark.parametrize("stamp", ["inf", "nan"])
def test_csv_non_finite_time_dropped(normalizer, stamp):
    assert normalizer.ingest(f"{stamp},38.1,-122.4,1.0,20.0,0,90.0,3") is None


def test_decoder_failure_is_dropped_not_raised(normalizer, monkeypatch):
    def broken(line):
        raise RuntimeError("decoder bug")

    monkeypatch.setattr(normalizer, "_from_csv", broken)
    assert normalizer.ingest(f"{T0},38.1,-122.4,1.0,20.0,0,90.0,3") is None
    assert normalizer.last_seq == 0
    assert normalizer.ingest(tpv()).seq == 1


# ---------------------------------------------------------------------------
# Performance: ingest < 1ms mean over 1000 rounds
# ---------------------------------------------------------------------------


def test_ingest_performance(benchmark, normalizer):
    raw = tpv()
    result = benchmark.pedantic(normalizer.ingest, args=(raw,), rounds=1000, iterations=1)
    assert isinstance(result, TelemetryFrame)
    stats = benchmark.stats
    assert stats["mean"] < 0.001, f"ingest mean {stats['mean'] * 1000:.3f}ms exceeds 1ms"
