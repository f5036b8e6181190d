"""Runtime settings from the environment and track description files.

Environment variables (a ``.env`` file is honoured by the entry points that
call :func:`dotenv.load_dotenv` first):

``SHADOWLINE_ENDPOINT``        default stream URL or replay file
``SHADOWLINE_TRACK_FILE``      JSON track description to configure at startup
``SHADOWLINE_MAX_RETRIES``     reconnection attempts before giving up (10)
``SHADOWLINE_BACKOFF_SEED_MS`` first reconnection delay (1000)
``SHADOWLINE_BACKOFF_CAP_MS``  longest reconnection delay (30000)
``SHADOWLINE_LOG_LEVEL``       logging level name (INFO)
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from shadowline.shadow.models import SectorBoundary, TrackConfig


@dataclass
class Settings:
    endpoint: str = ""
    track_file: str = ""
    max_retries: int = 10
    backoff_seed_ms: int = 1000
    backoff_cap_ms: int = 30000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            endpoint=env.get("SHADOWLINE_ENDPOINT", ""),
            track_file=env.get("SHADOWLINE_TRACK_FILE", ""),
            max_retries=int(env.get("SHADOWLINE_MAX_RETRIES", "10")),
            backoff_seed_ms=int(env.get("SHADOWLINE_BACKOFF_SEED_MS", "1000")),
            backoff_cap_ms=int(env.get("SHADOWLINE_BACKOFF_CAP_MS", "30000")),
            log_level=env.get("SHADOWLINE_LOG_LEVEL", "INFO").upper(),
        )


def track_config_from_dict(data: dict) -> TrackConfig:
    """Build a :class:`TrackConfig` from a parsed track description.

    Expected shape::

        {
          "start_finish": {"lat": 38.1615, "lon": -122.454},
          "start_finish_radius": 30,
          "min_lap_time": 30,
          "track_length": 4000,
          "sectors": [{"id": 1, "name": "Sector 1", "start": 0, "end": 1300}, ...]
        }

    Raises:
        ValueError: If a required key is missing or a value has the wrong type.
    """
    try:
        start_finish = data["start_finish"]
        sectors = [
            SectorBoundary(
                id=int(s["id"]),
                name=str(s.get("name", f"Sector {s['id']}")),
                start_distance=float(s["start"]),
                end_distance=float(s["end"]),
            )
            for s in data.get("sectors", [])
        ]
        config = TrackConfig(
            start_finish_lat=float(start_finish["lat"]),
            start_finish_lon=float(start_finish["lon"]),
            sectors=sectors,
            track_length=float(data["track_length"]),
            start_finish_radius=float(data.get("start_finish_radius", 25.0)),
            min_lap_time=float(data.get("min_lap_time", 30.0)),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid track description: {exc}") from exc

    for prev, nxt in zip(sectors, sectors[1:]):
        if nxt.start_distance < prev.end_distance:
            raise ValueError(f"Sectors {prev.id} and {nxt.id} overlap")
    return config


def load_track_config(path: str | Path) -> TrackConfig:
    """Read a JSON track description from *path*."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid track file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Invalid track file {path}: expected a JSON object")
    return track_config_from_dict(data)
