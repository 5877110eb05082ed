"""Listing Manager process entry-point.

Usage:
    python -m listing_manager [--once [LOOP ...]] [--log-level LEVEL] [--log-format FORMAT]

The orchestration logic lives in ``listing_manager.orchestrator``.  This
module calls ``configure_logging()`` first, then hands off.

Default behaviour (no ``--once``) is continuous: the admin session is
bootstrapped and the three loops run on their timers until SIGTERM or Ctrl+C.
``--once`` logs in, runs one tick of the named loops (all three when none are
named) and exits.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from listing_manager.core import configure_logging
from listing_manager.core.exceptions import ConfigError, ListingManagerError
from listing_manager.core.settings import Settings

_LOOP_CHOICES = ("orders", "rented", "listed")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="listing-manager",
        description="Reconcile rented devices between the rental API and the marketplace.",
    )
    parser.add_argument(
        "--once",
        nargs="*",
        choices=_LOOP_CHOICES,
        default=None,
        metavar="LOOP",
        help=(
            "Log in, run one tick of each named loop (orders, rented, listed; "
            "default all) and exit instead of running continuously."
        ),
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"listing-manager: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)
    logger.info("Listing Manager starting up")

    # Lazy import keeps startup fast when module is imported without running.
    from listing_manager.orchestrator.runner import run_once  # noqa: PLC0415
    from listing_manager.orchestrator.scheduler import run_continuous  # noqa: PLC0415

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    try:
        if args.once is not None:
            logger.info("Running a single pass (--once).")
            asyncio.run(run_once(settings=settings, loops=args.once))
        else:
            logger.info("Running in continuous mode (Ctrl+C to stop).")
            asyncio.run(run_continuous(settings=settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except ListingManagerError as exc:
        logger.critical("Single pass failed: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted — exiting.")
        sys.exit(0)
    except asyncio.CancelledError:
        logger.info("Shutdown complete — exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
