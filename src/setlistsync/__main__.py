"""Command line entry point.

    python -m setlistsync run
    python -m setlistsync trigger show_sync --secret ...
    python -m setlistsync init-db
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from setlistsync.application.workers import JOB_NAMES
from setlistsync.config import Settings, get_settings
from setlistsync.domain.exceptions import DomainException
from setlistsync.infrastructure.lifecycle import run_service, setup

logger = logging.getLogger("setlistsync")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="setlistsync", description="Fan voting ingestion and reconciliation pipeline"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the scheduler until interrupted")

    trigger = sub.add_parser("trigger", help="Run one job now and print its result")
    trigger.add_argument("job", choices=JOB_NAMES)
    trigger.add_argument(
        "--secret",
        default=os.environ.get("SETLISTSYNC_JOBS__TRIGGER_SECRET"),
        help="Shared trigger secret (default: $SETLISTSYNC_JOBS__TRIGGER_SECRET)",
    )

    sub.add_parser("init-db", help="Create all tables (development; use alembic otherwise)")
    return parser


async def _trigger(settings: Settings, job: str, secret: str | None) -> int:
    container = setup(settings)
    try:
        result = await container.scheduler.trigger(job, secret or "")
    finally:
        await container.aclose()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


async def _init_db(settings: Settings) -> int:
    container = setup(settings)
    try:
        await container.db.create_tables()
        logger.info("Tables created at %s", settings.database.url)
    finally:
        await container.aclose()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    try:
        if args.command == "run":
            asyncio.run(run_service(settings))
            return 0
        if args.command == "trigger":
            return asyncio.run(_trigger(settings, args.job, args.secret))
        return asyncio.run(_init_db(settings))
    except DomainException as e:
        logger.error("%s: %s", type(e).__name__, e.message)
        return 2


if __name__ == "__main__":
    sys.exit(main())
