"""Serve the Shadow Line control API.

Usage:
    uv run python scripts/serve.py
    uv run python scripts/serve.py --host 0.0.0.0 --port 8080
    uv run uvicorn shadowline.web.app:app            # equivalent, default port 8000
"""

from __future__ import annotations

import argparse
import logging

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from shadowline.config import Settings  # noqa: E402


def main() -> None:
    settings = Settings.from_env()

    ap = argparse.ArgumentParser(description="Shadow Line — control API")
    ap.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    ap.add_argument("--port", type=int, default=8000, help="Port to listen on")
    args = ap.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("shadowline.web.app:app", host=args.host, port=args.port)


if __name__ == "__main__":
    main()
