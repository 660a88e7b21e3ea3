"""Module entrypoint to run `python -m winpanel`."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from . import __version__
from .config import load_config

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="winpanel", description=__doc__)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Override the configured log level.",
    )
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("tui", help="Run the terminal dashboard (default).")
    commands.add_parser("serve", help="Answer JSON-lines IPC requests on stdin/stdout.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    config = load_config()
    level = (args.log_level or config.log_level).upper()
    if args.command == "serve":
        # stdout carries IPC replies.
        logging.basicConfig(level=level, stream=sys.stderr, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        from .ipc import build_router, serve
        from .panel import create_panel

        asyncio.run(serve(build_router(create_panel(config))))
        return

    from textual.logging import TextualHandler

    from .app import main as run_app

    logging.basicConfig(level=level, handlers=[TextualHandler()])

    run_app()


if __name__ == "__main__":
    main()
