from __future__ import annotations

import asyncio
from typing import Optional, Protocol, Tuple

from migrator.core.logging import get_logger
from migrator.models.enrichment import TitleMeta, VideoMeta
from migrator.models.source_records import SourceRecord
from pipeline.cache_store import EnrichmentCache
from pipeline.errors import EnrichmentFailure
from pipeline.video_probe_service import ProbeResult, VideoNotFound

logger = get_logger()


def per_attempt_timeout(budget_s: float, *, max_retries: int, first_delay_s: float) -> float:
    """
    Timeout for one network attempt so that every retry, including the
    doubling backoff sleeps between them, fits inside one record's budget.
    """
    backoff = sum(first_delay_s * (2 ** n) for n in range(max(0, max_retries)))
    return max(1.0, (budget_s - backoff) / (max(0, max_retries) + 1))


class VideoProber(Protocol):
    async def probe(self, url: str) -> ProbeResult: ...


class TitleShortener(Protocol):
    async def shorten(self, title: str) -> str: ...


class EnrichmentService:
    """
    Cache-first access to the two expensive lookups. A fresh result is written
    to the cache before it is returned; absent results are not cached.
    """

    def __init__(
        self,
        cache: EnrichmentCache,
        *,
        prober: Optional[VideoProber],
        shortener: Optional[TitleShortener],
        timeout_s: float = 60.0,
    ) -> None:
        self.cache = cache
        self.prober = prober
        self.shortener = shortener
        self.timeout_s = timeout_s
        self.probe_calls = 0
        self.shorten_calls = 0

    async def _probe_first(self, record: SourceRecord, urls: Tuple[str, ...]) -> Optional[Tuple[str, ProbeResult]]:
        for url in urls:
            try:
                return url, await self.prober.probe(url)
            except VideoNotFound:
                logger.info("video_not_found", story_id=record.id, url=url)
            except Exception as exc:
                logger.warning("video_probe_failed", story_id=record.id, url=url, error=str(exc))
        return None

    async def get_video_meta(self, record: SourceRecord) -> Optional[VideoMeta]:
        cached = self.cache.get_video(record.import_key)
        if cached is not None:
            return cached

        video = record.video
        if video is None or not video.probe_urls or self.prober is None:
            return None

        self.probe_calls += 1
        try:
            probed = await asyncio.wait_for(self._probe_first(record, video.probe_urls), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("video_probe_timeout", story_id=record.id, urls=list(video.probe_urls), timeout_s=self.timeout_s)
            return None
        if probed is None:
            return None
        url, result = probed

        meta = VideoMeta(
            id=record.import_key,
            title=record.raw_title or None,
            url=video.url or url,
            thumbnail=video.thumbnail_url or result.thumbnail_url,
            ratio=result.ratio,
        )
        return await self.cache.add_video(meta)

    async def get_short_title(self, record: SourceRecord) -> str:
        cached = self.cache.get_title(record.import_key)
        if cached is not None:
            return cached.list_title

        title = record.raw_title
        if not title:
            raise EnrichmentFailure("title_shortener", f"story {record.id} has no title to shorten")
        if self.shortener is None:
            raise EnrichmentFailure("title_shortener", "no shortening service configured")

        self.shorten_calls += 1
        try:
            shortened = await asyncio.wait_for(self.shortener.shorten(title), timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise EnrichmentFailure("title_shortener", f"timed out after {self.timeout_s}s") from exc
        except Exception as exc:
            raise EnrichmentFailure("title_shortener", str(exc)) from exc

        meta = await self.cache.add_title(TitleMeta(id=record.import_key, title=title, list_title=shortened))
        return meta.list_title
