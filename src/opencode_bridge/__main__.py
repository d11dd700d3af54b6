"""Command-line entry point: `opencode-bridge [stdio|sse]`."""

from __future__ import annotations

import argparse
import logging
import sys

from .config import ServerSettings


def configure_logging(level: str) -> None:
    # stdout carries the stdio protocol stream; logs go to stderr.
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="opencode-bridge", description="MCP bridge for an opencode agent server")
    parser.add_argument("mode", nargs="?", default="stdio", choices=("stdio", "sse"))
    args = parser.parse_args(argv)

    settings = ServerSettings.from_env()
    configure_logging(settings.log_level)

    from .server import run

    run(args.mode, settings=settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
