"""Live Table server launcher."""

import argparse
import logging
from pathlib import Path

import uvicorn

from livetable.app import create_app
from livetable.config import Settings


def main():
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Live Table roleplay server")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Directory holding rp.json (default: ./data or $DATA_DIR)")
    parser.add_argument("--host", default=settings.host)
    parser.add_argument("--port", type=int, default=settings.port)
    parser.add_argument("--echo-narrator", action="store_true",
                        help="Narrate by echoing actions back (no API key or network needed)")
    parser.add_argument("--log-level", default="info",
                        choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.data_dir:
        settings.data_dir = args.data_dir
    settings.host, settings.port = args.host, args.port
    if args.echo_narrator:
        settings.narrator_backend = "echo"

    print(f"Starting Live Table on http://{settings.host}:{settings.port} ...")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port,
                log_level=args.log_level)


if __name__ == "__main__":
    main()
