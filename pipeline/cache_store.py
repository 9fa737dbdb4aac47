"""
Durable enrichment cache.

One JSON document maps a source story id to the expensive results computed
for it: probed video facts (``ratios``) and shortened list titles (``news``).
The document is read once at startup; every new entry is appended in memory
and the whole document is rewritten.

Entries are append-only. Once an id has a value it is never replaced, so a
re-run reuses exactly what the previous run computed.

All mutations go through one ``asyncio.Lock``: the append and the rewrite
happen as a single critical section, so concurrent pipelines cannot lose each
other's entries. The file is written to a sibling temp file and swapped in
with ``os.replace`` so a crash mid-write leaves the previous document intact.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError

from migrator.core.logging import get_logger
from migrator.models.enrichment import EnrichmentDocument, TitleMeta, VideoMeta

logger = get_logger()


class EnrichmentCache:
    def __init__(self, path: Union[str, Path], document: Optional[EnrichmentDocument] = None) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()
        doc = document or EnrichmentDocument()
        self._videos: Dict[str, VideoMeta] = {}
        self._titles: Dict[str, TitleMeta] = {}
        for video in doc.ratios:
            self._videos.setdefault(video.id, video)
        for title in doc.news:
            self._titles.setdefault(title.id, title)
        self.writes = 0

    @classmethod
    def load(cls, path: Union[str, Path]) -> "EnrichmentCache":
        cache_path = Path(path)
        if not cache_path.exists():
            logger.info("enrichment_cache_created", path=str(cache_path))
            return cls(cache_path)
        try:
            raw = json.loads(cache_path.read_text(encoding="utf-8") or "{}")
            document = EnrichmentDocument.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise RuntimeError(f"enrichment cache at {cache_path} is unreadable: {exc}") from exc
        cache = cls(cache_path, document)
        logger.info(
            "enrichment_cache_loaded",
            path=str(cache_path),
            videos=len(cache._videos),
            titles=len(cache._titles),
        )
        return cache

    def __len__(self) -> int:
        return len(self._videos) + len(self._titles)

    def get_video(self, story_id: str) -> Optional[VideoMeta]:
        return self._videos.get(str(story_id))

    def get_title(self, story_id: str) -> Optional[TitleMeta]:
        return self._titles.get(str(story_id))

    async def add_video(self, meta: VideoMeta) -> VideoMeta:
        async with self._lock:
            existing = self._videos.get(meta.id)
            if existing is not None:
                return existing
            self._videos[meta.id] = meta
            await self._persist()
            return meta

    async def add_title(self, meta: TitleMeta) -> TitleMeta:
        async with self._lock:
            existing = self._titles.get(meta.id)
            if existing is not None:
                return existing
            self._titles[meta.id] = meta
            await self._persist()
            return meta

    def _snapshot(self) -> str:
        document = EnrichmentDocument(
            ratios=list(self._videos.values()),
            news=list(self._titles.values()),
        )
        return document.model_dump_json(indent=None)

    async def _persist(self) -> None:
        # Snapshot under the lock, write off the event loop.
        payload = self._snapshot()
        await asyncio.to_thread(self._write_document, payload)
        self.writes += 1

    def _write_document(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self.path)
