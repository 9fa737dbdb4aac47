from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from migrator.config import settings
from migrator.core.logging import configure_logging, get_logger
from migrator.core.run_id import with_run_id
from pipeline.cache_store import EnrichmentCache
from pipeline.db_service import Database
from pipeline.enrichment_service import EnrichmentService
from pipeline.errors import SourceUnavailable
from pipeline.migration_driver import (
    build_context,
    build_title_shortener,
    export_legacy_taxonomy,
    run_migration,
    warm_title_cache,
)
from pipeline.story_classifier import TitlePolicy

configure_logging(service_name="worker")
logger = get_logger().bind(worker="story_migration_bot")

MODES = ("migrate", "warm-titles", "export-taxonomy")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="StoryMigrationBot: move published legacy stories into the new schema.")
    parser.add_argument(
        "--mode",
        choices=MODES,
        default="migrate",
        help="migrate (default), warm-titles (pre-shorten long titles) or export-taxonomy (dump brands/categories).",
    )
    parser.add_argument(
        "--read-count",
        type=int,
        default=settings.MIGRATION_READ_COUNT,
        help=f"Rows per cursor page (default: {settings.MIGRATION_READ_COUNT}).",
    )
    parser.add_argument(
        "--batch-count",
        type=int,
        default=settings.MIGRATION_BATCH_COUNT,
        help=f"In-flight stories before the driver waits (default: {settings.MIGRATION_BATCH_COUNT}).",
    )
    parser.add_argument(
        "--auto-create-identities",
        action="store_true",
        default=None,
        help="Create missing editors/writers in the destination instead of skipping.",
    )
    return parser.parse_args(argv)


async def _run_migrate(args: argparse.Namespace) -> int:
    ctx = await build_context(settings, auto_create_identities=args.auto_create_identities)
    try:
        stats = await run_migration(ctx, read_count=args.read_count, batch_count=args.batch_count)
    finally:
        await ctx.close()
    logger.info("story_migration_complete", **stats.as_dict())
    return 0


async def _connect_source() -> Database:
    if not settings.SOURCE_DATABASE_URL:
        raise RuntimeError("SOURCE_DATABASE_URL ontbreekt. Controleer .env.")
    return await Database.connect(settings.SOURCE_DATABASE_URL, name="source")


async def _run_warm_titles(args: argparse.Namespace) -> int:
    source = await _connect_source()
    try:
        cache = EnrichmentCache.load(settings.ENRICHMENT_CACHE_PATH)
        shortener = build_title_shortener(settings)
        if shortener is None:
            raise RuntimeError("title warm-up needs OPENAI_API_KEY or OPENAI_BASE_URL")
        enrichment = EnrichmentService(
            cache,
            prober=None,
            shortener=shortener,
            timeout_s=settings.RECORD_ENRICHMENT_TIMEOUT_S,
        )
        counters = await warm_title_cache(
            source,
            enrichment,
            policy=TitlePolicy(max_length=settings.TITLE_MAX_LENGTH, slug_max_length=settings.SLUG_MAX_LENGTH),
            read_count=args.read_count,
            batch_count=args.batch_count,
        )
    finally:
        await source.close()
    logger.info("title_warmup_complete", **counters)
    return 0


async def _run_export_taxonomy(args: argparse.Namespace) -> int:
    source = await _connect_source()
    try:
        counts = await export_legacy_taxonomy(
            source,
            brands_path=settings.LEGACY_BRANDS_PATH,
            categories_path=settings.LEGACY_CATEGORIES_PATH,
        )
    finally:
        await source.close()
    logger.info("taxonomy_export_complete", **counts)
    return 0


async def run_mode(args: argparse.Namespace) -> int:
    runners = {
        "migrate": _run_migrate,
        "warm-titles": _run_warm_titles,
        "export-taxonomy": _run_export_taxonomy,
    }
    try:
        return await runners[args.mode](args)
    except (SourceUnavailable, RuntimeError) as exc:
        logger.error("story_migration_run_failed", mode=args.mode, error=str(exc))
        return 1


async def main_async() -> int:
    args = parse_args()
    args.read_count = max(1, args.read_count)
    args.batch_count = max(1, args.batch_count)
    with with_run_id():
        return await run_mode(args)


def main() -> None:
    exit_code = asyncio.run(main_async())
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
