"""
Streaming migration driver.

Pages through published legacy stories with a server-side cursor and runs one
resolve → enrich → classify → write pipeline per row as its own task. Tasks
accumulate until ``batch_count`` are in flight, then the driver waits for all
of them; at the end of every page it waits again, so a page is fully settled
before the next one is requested.

Per-story failures are caught at :func:`process_record` and counted; only a
broken cursor or an unreachable store ends the run (:class:`SourceUnavailable`).
"""

from __future__ import annotations

import asyncio
import json
from contextlib import AsyncExitStack
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import asyncpg
from openai import AsyncOpenAI

from migrator.config import Settings, require_database_urls
from migrator.core.logging import get_logger
from migrator.models.editorial_rules import EditorialRules, load_editorial_rules
from migrator.models.reference_data import Brand, ResolvedAuthor
from migrator.models.source_records import SourceRecord
from pipeline.cache_store import EnrichmentCache
from pipeline.db_service import Database
from pipeline.enrichment_service import EnrichmentService, per_attempt_timeout
from pipeline.errors import EnrichmentFailure, ResolutionGap, SourceUnavailable
from pipeline.idempotent_writer import AlreadyExists, IdempotentWriter, WriteResult
from pipeline.reference_resolver import AuthorIndex, BrandMapping, ReferenceResolver
from pipeline.story_classifier import (
    Enrichment,
    Skip,
    TitlePolicy,
    classify,
    emits_payload,
    needs_short_title,
    needs_video,
    require_references,
    routes_to_column,
)
from pipeline.title_shortening_service import TitleShorteningService
from pipeline.video_probe_service import VideoProbeService

logger = get_logger()

STORY_QUERY = """
SELECT * FROM story
WHERE status = 'published' AND author_id IS NOT NULL
ORDER BY published_at DESC
"""

TITLE_WARMUP_QUERY = """
SELECT * FROM story
WHERE status = 'published' AND author_id IS NOT NULL
  AND video IS NULL AND content_data IS NOT NULL
ORDER BY published_at DESC
"""

SHORTEN_RETRIES = 2
SHORTEN_BACKOFF_S = 0.9
PROBE_RETRIES = 2


@dataclass
class MigrationStats:
    pages: int = 0
    drains: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    no_payload: int = 0
    inserted: int = 0
    already_exists: int = 0
    by_kind: Dict[str, int] = field(default_factory=dict)

    def record_write(self, kind: str, result: WriteResult) -> None:
        if isinstance(result, AlreadyExists):
            self.already_exists += 1
        else:
            self.inserted += 1
            self.by_kind[kind] = self.by_kind.get(kind, 0) + 1

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineContext:
    """Everything one run shares; built by :func:`build_context`, released by :meth:`close`."""

    source: Database
    destination: Database
    cache: EnrichmentCache
    rules: EditorialRules
    authors: AuthorIndex
    brands: BrandMapping
    enrichment: EnrichmentService
    writer: IdempotentWriter
    policy: TitlePolicy = field(default_factory=TitlePolicy)
    _stack: Optional[AsyncExitStack] = field(default=None, repr=False)

    async def close(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None


def build_title_shortener(cfg: Settings) -> Optional[TitleShorteningService]:
    if not cfg.OPENAI_API_KEY and not cfg.OPENAI_BASE_URL:
        logger.warning("title_shortener_disabled", reason="no OPENAI_API_KEY or OPENAI_BASE_URL")
        return None
    client = AsyncOpenAI(api_key=cfg.OPENAI_API_KEY or "not-needed", base_url=cfg.OPENAI_BASE_URL)
    return TitleShorteningService(
        model=cfg.TITLE_SHORTEN_MODEL,
        limit=cfg.TITLE_MAX_LENGTH,
        max_retries=SHORTEN_RETRIES,
        timeout_s=per_attempt_timeout(
            cfg.RECORD_ENRICHMENT_TIMEOUT_S, max_retries=SHORTEN_RETRIES, first_delay_s=SHORTEN_BACKOFF_S
        ),
        backoff_s=SHORTEN_BACKOFF_S,
        client=client,
    )


async def build_context(cfg: Settings, *, auto_create_identities: Optional[bool] = None) -> PipelineContext:
    source_dsn, destination_dsn = require_database_urls(cfg)
    auto_create = cfg.AUTO_CREATE_MISSING_IDENTITIES if auto_create_identities is None else auto_create_identities

    stack = AsyncExitStack()
    try:
        source = await Database.connect(source_dsn, name="source")
        stack.push_async_callback(source.close)
        destination = await Database.connect(destination_dsn, name="destination")
        stack.push_async_callback(destination.close)

        cache = EnrichmentCache.load(cfg.ENRICHMENT_CACHE_PATH)
        probe_timeout = min(
            cfg.VIDEO_PROBE_TIMEOUT_S,
            per_attempt_timeout(cfg.RECORD_ENRICHMENT_TIMEOUT_S, max_retries=PROBE_RETRIES, first_delay_s=1.0),
        )
        prober = await stack.enter_async_context(
            VideoProbeService(timeout_s=probe_timeout, max_retries=PROBE_RETRIES)
        )
        enrichment = EnrichmentService(
            cache,
            prober=prober,
            shortener=build_title_shortener(cfg),
            timeout_s=cfg.RECORD_ENRICHMENT_TIMEOUT_S,
        )

        rules = load_editorial_rules(cfg.EDITORIAL_RULES_PATH)
        resolver = ReferenceResolver(
            source,
            destination,
            rules=rules,
            brands_path=cfg.LEGACY_BRANDS_PATH,
            categories_path=cfg.LEGACY_CATEGORIES_PATH,
            auto_create_identities=auto_create,
            min_score=cfg.NAME_MATCH_MIN_SCORE,
        )
        try:
            authors, brands = await resolver.resolve()
        except (asyncpg.PostgresError, OSError) as exc:
            raise SourceUnavailable(f"reference data could not be loaded: {exc}") from exc
    except BaseException:
        await stack.aclose()
        raise

    logger.info("pipeline_context_ready", auto_create_identities=auto_create, cached_entries=len(cache))
    return PipelineContext(
        source=source,
        destination=destination,
        cache=cache,
        rules=rules,
        authors=authors,
        brands=brands,
        enrichment=enrichment,
        writer=IdempotentWriter(destination),
        policy=TitlePolicy(max_length=cfg.TITLE_MAX_LENGTH, slug_max_length=cfg.SLUG_MAX_LENGTH),
        _stack=stack,
    )


async def gather_enrichment(
    ctx: PipelineContext,
    record: SourceRecord,
    author: ResolvedAuthor,
    brand: Brand,
) -> Optional[Enrichment]:
    """Network lookups one story needs before it can be classified; None when it yields nothing."""
    video = await ctx.enrichment.get_video_meta(record) if needs_video(record, brand) else None
    if not emits_payload(record, brand, ctx.rules, video):
        return None

    short_title = None
    if needs_short_title(record, ctx.policy):
        short_title = await ctx.enrichment.get_short_title(record)

    writer = None
    if routes_to_column(record, author, brand, ctx.rules):
        writer = await ctx.authors.writer_for(author.full_name)

    return Enrichment(video=video, short_title=short_title, writer=writer)


async def process_record(ctx: PipelineContext, record: SourceRecord, stats: MigrationStats) -> None:
    stats.processed += 1
    log = logger.bind(story_id=record.id)
    try:
        author, _, brand = require_references(
            record, ctx.authors.get(record.author_id), ctx.brands.resolve(record), ctx.rules
        )
        enrichment = await gather_enrichment(ctx, record, author, brand)
        if enrichment is None:
            stats.no_payload += 1
            log.debug("story_without_payload")
            return

        result = classify(record, author, brand, rules=ctx.rules, enrichment=enrichment, policy=ctx.policy)
        if isinstance(result, Skip):
            stats.skipped += 1
            log.info("story_skipped", reason=result.reason)
            return
        if not result:
            stats.no_payload += 1
            log.debug("story_without_payload")
            return

        for payload in result:
            outcome = await ctx.writer.write(payload)
            stats.record_write(payload.kind, outcome)
            log.info(
                "story_written",
                kind=payload.kind,
                table=outcome.table,
                row_id=outcome.row_id,
                already_exists=isinstance(outcome, AlreadyExists),
            )
    except ResolutionGap as gap:
        stats.skipped += 1
        log.info(
            "story_skipped",
            reason=gap.reason,
            author_id=record.author_id,
            brand_id=record.brand_id,
            category_id=record.category_id,
        )
    except Exception as exc:
        stats.failed += 1
        log.error("story_failed", error_type=type(exc).__name__, error=str(exc))


async def _process_row(ctx: PipelineContext, row: Mapping[str, Any], stats: MigrationStats) -> None:
    try:
        record = SourceRecord.from_row(dict(row))
    except (KeyError, TypeError, ValueError) as exc:
        stats.processed += 1
        stats.failed += 1
        logger.error("story_unreadable", story_id=dict(row).get("id"), error=str(exc))
        return
    await process_record(ctx, record, stats)


async def _drain(tasks: List["asyncio.Task[None]"], stats: MigrationStats) -> None:
    await asyncio.gather(*tasks)
    stats.drains += 1
    logger.debug("batch_drained", size=len(tasks), drains=stats.drains)


async def run_migration(
    ctx: PipelineContext,
    *,
    read_count: int,
    batch_count: int,
    stats: Optional[MigrationStats] = None,
) -> MigrationStats:
    stats = stats or MigrationStats()
    batch_count = max(1, batch_count)
    logger.info("migration_started", read_count=read_count, batch_count=batch_count)

    try:
        async for page in ctx.source.iter_pages(STORY_QUERY, page_size=read_count):
            stats.pages += 1
            pending: List["asyncio.Task[None]"] = []
            for row in page:
                pending.append(asyncio.create_task(_process_row(ctx, row, stats)))
                if len(pending) >= batch_count:
                    await _drain(pending, stats)
                    pending = []
            if pending:
                await _drain(pending, stats)
            logger.info(
                "page_drained",
                page=stats.pages,
                rows=len(page),
                processed=stats.processed,
                skipped=stats.skipped,
                failed=stats.failed,
            )
    except (asyncpg.PostgresError, OSError) as exc:
        raise SourceUnavailable(f"story cursor failed: {exc}") from exc

    logger.info("migration_finished", **stats.as_dict())
    return stats


# ---- supplementary runs ------------------------------------------------------


async def warm_title_cache(
    source: Database,
    enrichment: EnrichmentService,
    *,
    policy: TitlePolicy,
    read_count: int,
    batch_count: int,
) -> Dict[str, int]:
    """Shorten long titles of content stories ahead of a migration run."""
    counters: Dict[str, int] = {"scanned": 0, "short_enough": 0, "cached": 0, "shortened": 0, "failed": 0}

    async def _warm(row: Mapping[str, Any]) -> None:
        counters["scanned"] += 1
        try:
            record = SourceRecord.from_row(dict(row))
            if not needs_short_title(record, policy):
                counters["short_enough"] += 1
                return
            if enrichment.cache.get_title(record.import_key) is not None:
                counters["cached"] += 1
                return
            await enrichment.get_short_title(record)
            counters["shortened"] += 1
        except (EnrichmentFailure, KeyError, TypeError, ValueError) as exc:
            counters["failed"] += 1
            logger.warning("title_warmup_failed", story_id=dict(row).get("id"), error=str(exc))

    batch_count = max(1, batch_count)
    try:
        async for page in source.iter_pages(TITLE_WARMUP_QUERY, page_size=read_count):
            pending: List["asyncio.Task[None]"] = []
            for row in page:
                pending.append(asyncio.create_task(_warm(row)))
                if len(pending) >= batch_count:
                    await asyncio.gather(*pending)
                    pending = []
            if pending:
                await asyncio.gather(*pending)
            logger.info("title_warmup_page", rows=len(page), **counters)
    except (asyncpg.PostgresError, OSError) as exc:
        raise SourceUnavailable(f"story cursor failed: {exc}") from exc

    logger.info("title_warmup_finished", **counters)
    return counters


def _existing_mappings(path: Path) -> Dict[Any, str]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8") or "[]")
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"taxonomy export at {path} is unreadable: {exc}") from exc
    mapped: Dict[Any, str] = {}
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, dict) and item.get("id") is not None and item.get("mapped"):
            mapped[item["id"]] = item["mapped"]
    return mapped


def _write_taxonomy(rows: List[Mapping[str, Any]], path: Path) -> int:
    mapped = _existing_mappings(path)
    entries = []
    for row in rows:
        entry = dict(row)
        entry["mapped"] = mapped.get(entry.get("id"), "")
        entries.append(entry)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(entries, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
    return len(entries)


async def export_legacy_taxonomy(
    source: Database,
    *,
    brands_path: Union[str, Path],
    categories_path: Union[str, Path],
) -> Dict[str, int]:
    """
    Dump legacy ``brand`` and ``category`` rows for hand-mapping. Each entry
    gets a ``mapped`` field (destination brand slug); values already filled in
    an earlier export are carried over.
    """
    try:
        brands = await source.fetch("SELECT * FROM brand ORDER BY id")
        categories = await source.fetch("SELECT * FROM category ORDER BY id")
    except (asyncpg.PostgresError, OSError) as exc:
        raise SourceUnavailable(f"taxonomy could not be read: {exc}") from exc

    counts = {
        "brands": _write_taxonomy([dict(r) for r in brands], Path(brands_path)),
        "categories": _write_taxonomy([dict(r) for r in categories], Path(categories_path)),
    }
    logger.info("taxonomy_exported", brands_path=str(brands_path), categories_path=str(categories_path), **counts)
    return counts
