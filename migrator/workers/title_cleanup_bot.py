from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from migrator.config import settings
from migrator.core.logging import configure_logging, get_logger
from migrator.core.run_id import with_run_id
from pipeline.db_service import Database
from pipeline.errors import SourceUnavailable
from pipeline.title_cleanup_service import CLEANUP_COLUMNS, cleanup_titles

configure_logging(service_name="worker")
logger = get_logger().bind(worker="title_cleanup_bot")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TitleCleanupBot: re-clean titles and slugs of migrated rows.")
    parser.add_argument(
        "--tables",
        nargs="+",
        choices=sorted(CLEANUP_COLUMNS),
        default=["news", "shorts"],
        help="Destination tables to clean (default: news shorts).",
    )
    parser.add_argument("--read-count", type=int, default=settings.MIGRATION_READ_COUNT)
    parser.add_argument("--batch-count", type=int, default=settings.MIGRATION_BATCH_COUNT)
    return parser.parse_args(argv)


async def run_cleanup(tables: list[str], read_count: int, batch_count: int) -> int:
    if not settings.DESTINATION_DATABASE_URL:
        logger.error("title_cleanup_run_failed", error="DESTINATION_DATABASE_URL ontbreekt")
        return 1
    try:
        destination = await Database.connect(settings.DESTINATION_DATABASE_URL, name="destination")
    except SourceUnavailable as exc:
        logger.error("title_cleanup_run_failed", error=str(exc))
        return 1

    try:
        results = await cleanup_titles(
            destination,
            tables=tables,
            read_count=read_count,
            batch_count=batch_count,
        )
    except SourceUnavailable as exc:
        logger.error("title_cleanup_run_failed", error=str(exc))
        return 1
    finally:
        await destination.close()

    logger.info(
        "title_cleanup_complete",
        updated=sum(r["updated"] for r in results.values()),
        failed=sum(r["failed"] for r in results.values()),
        tables=results,
    )
    return 0


async def main_async() -> int:
    args = parse_args()
    with with_run_id():
        return await run_cleanup(
            tables=list(args.tables),
            read_count=max(1, args.read_count),
            batch_count=max(1, args.batch_count),
        )


def main() -> None:
    exit_code = asyncio.run(main_async())
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
