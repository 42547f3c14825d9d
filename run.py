"""
Start the STL preview API with uvicorn.

    python run.py [--host HOST] [--port PORT] [--log-level LEVEL]

The repository root is put on ``sys.path`` so ``backend.app.main`` can
be imported without installing the project.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve multi-view STL previews over HTTP.")
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind (default: all)")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument(
        "--log-level",
        default="DEBUG",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root logger level; per-view render timings are logged at DEBUG",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    repo_root = Path(__file__).resolve().parent
    if str(repo_root) not in sys.path:
        sys.path.append(str(repo_root))
    from backend.app.main import app  # type: ignore

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
