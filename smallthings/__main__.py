"""Smallthings process entry-point.

Usage:
    python -m smallthings [--backend sqlite|memory] [--database PATH]

Opens the configured storage backend once, which bootstraps the SQLite schema
when it is missing, logs a summary of what is stored, and exits.  The web
application performs the same :func:`~smallthings.storage.create_storage`
call at startup; this command is the way to prepare or inspect a database
without starting it.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from smallthings.core import configure_logging
from smallthings.core.exceptions import ConfigError
from smallthings.core.settings import STORAGE_BACKENDS, Settings
from smallthings.storage import create_storage


async def _summarise(settings: Settings) -> None:
    logger = logging.getLogger(__name__)
    async with await create_storage(settings) as storage:
        listings = await storage.list_listings()
        categories = await storage.list_categories()
        logger.info(
            "Storage ready (backend=%s): %d listings, %d categories",
            settings.storage_backend,
            len(listings),
            len(categories),
        )


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="smallthings",
        description="Initialise and inspect the Smallthings listings store.",
    )
    parser.add_argument(
        "--backend",
        choices=sorted(STORAGE_BACKENDS),
        default=None,
        help="Override STORAGE_BACKEND env var.",
    )
    parser.add_argument(
        "--database",
        default=None,
        metavar="PATH",
        help="Override DATABASE_PATH env var (sqlite backend only).",
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

    args = parser.parse_args()

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"smallthings: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    overrides: dict[str, str] = {}
    if args.backend:
        overrides["storage_backend"] = args.backend
    if args.database:
        overrides["database_path"] = args.database

    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        logger.critical("Invalid settings: %s", exc)
        sys.exit(1)

    try:
        asyncio.run(_summarise(settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
