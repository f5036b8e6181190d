"""Console runner: stream telemetry, detect laps and print the live shadow delta.

Press Ctrl+C to quit.

Usage:
    uv run python scripts/live_session.py --endpoint http://192.168.4.1/events --track tracks/sonoma.json
    uv run python scripts/live_session.py --endpoint recordings/session.txt --speed 4
    uv run python scripts/live_session.py                  # SHADOWLINE_ENDPOINT / SHADOWLINE_TRACK_FILE
"""

from __future__ import annotations

import argparse
import logging
import sys
import time

from dotenv import load_dotenv

load_dotenv()

from shadowline.config import Settings, load_track_config  # noqa: E402
from shadowline.live.session import LiveSession  # noqa: E402
from shadowline.shadow.models import LapRecord  # noqa: E402
from shadowline.telemetry.backoff import FibonacciBackoff  # noqa: E402
from shadowline.telemetry.connection import StreamConnection  # noqa: E402
from shadowline.telemetry.models import ConnectionState  # noqa: E402
from shadowline.telemetry.transport import ReplayTransport, is_replay_endpoint, open_transport  # noqa: E402


def _replay_factory(speed: float, loop: bool):
    def factory(endpoint, on_open, on_message, on_error):
        if is_replay_endpoint(endpoint):
            return ReplayTransport(endpoint, on_open, on_message, on_error, loop=loop, speed=speed)
        return open_transport(endpoint, on_open, on_message, on_error)

    return factory


def _print_lap(lap: LapRecord) -> None:
    sectors = "  ".join(f"S{i + 1} {t:6.3f}" for i, t in enumerate(lap.sector_times))
    print(f"\n  Lap {lap.lap_number:>3}  {lap.lap_time:8.3f} s   {sectors}", flush=True)


def _print_state(state: ConnectionState, info: str | None) -> None:
    suffix = f" ({info})" if info else ""
    print(f"\n  [{state.value}]{suffix}", flush=True)


def main() -> None:
    settings = Settings.from_env()

    ap = argparse.ArgumentParser(description="Shadow Line — live lap delta")
    ap.add_argument("--endpoint", default=settings.endpoint, help="SSE URL or recorded stream file")
    ap.add_argument("--track", default=settings.track_file, help="JSON track description")
    ap.add_argument("--speed", type=float, default=1.0, help="Replay speed multiplier")
    ap.add_argument("--no-loop", action="store_true", help="Stop a replay at end of file")
    ap.add_argument("--interval", type=float, default=0.5, help="Seconds between status lines")
    args = ap.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.endpoint:
        print("No endpoint: pass --endpoint or set SHADOWLINE_ENDPOINT.", file=sys.stderr)
        sys.exit(2)
    if not args.track:
        print("No track: pass --track or set SHADOWLINE_TRACK_FILE.", file=sys.stderr)
        sys.exit(2)

    try:
        track = load_track_config(args.track)
    except (OSError, ValueError) as exc:
        print(f"Cannot load track: {exc}", file=sys.stderr)
        sys.exit(2)

    connection = StreamConnection(
        transport_factory=_replay_factory(args.speed, loop=not args.no_loop),
        max_retries=settings.max_retries,
        backoff=FibonacciBackoff(settings.backoff_seed_ms, settings.backoff_cap_ms),
    )
    session = LiveSession(connection=connection)
    session.configure(track)
    session.engine.on_lap_complete(_print_lap)
    connection.on_state_change(_print_state)

    session.connect(args.endpoint)
    print(f"Streaming from {args.endpoint}. Press Ctrl+C to stop.", flush=True)

    try:
        while session.state is not ConnectionState.DEAD:
            time.sleep(args.interval)
            state = session.engine.get_state()
            frame = session.latest_frame
            speed = frame.speed_kmh if frame is not None else 0.0
            delta = f"{state.current_delta:+7.3f} s" if state.shadow_lap_id else "   --   "
            print(
                f"\r  {state.distance_in_lap:7.1f} m  {speed:6.1f} km/h  "
                f"Δ {delta}  {session.frame_rate:5.1f} Hz",
                end="",
                flush=True,
            )
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        session.close()

    laps = session.engine.get_completed_laps()
    shadow = session.engine.get_shadow_lap()
    print(f"{len(laps)} lap(s) completed.")
    if shadow is not None:
        print(f"Theoretical best: {shadow.lap_time:.3f} s")


if __name__ == "__main__":
    main()
