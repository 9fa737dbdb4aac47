# tests/fixtures/__init__.py
"""
Test fixtures for the migration pipeline.

Factory functions for creating test data:
- make_story_row() / make_record()
- make_editor() / make_author() / make_brand()
- make_context()

In-memory stand-ins for the collaborators:
- FakeDatabase (both stores: cursor pages, lookups, dynamic INSERTs)
- FakeShortener / FakeProber
"""

from __future__ import annotations

import json
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from migrator.models.editorial_rules import EditorialRules
from migrator.models.reference_data import Brand, Editor, ResolvedAuthor
from migrator.models.source_records import SourceRecord
from pipeline.cache_store import EnrichmentCache
from pipeline.enrichment_service import EnrichmentService
from pipeline.idempotent_writer import IdempotentWriter
from pipeline.name_index import NameIndex
from pipeline.reference_resolver import AuthorIndex, BrandMapping
from pipeline.story_classifier import TitlePolicy
from pipeline.video_probe_service import ProbeResult, VideoNotFound

_INSERT_RE = re.compile(r'INSERT INTO "?(\w+)"?\s*\(([^)]*)\)', re.S)
_SELECT_BY_IMPORT_RE = re.compile(r'SELECT id FROM "?(\w+)"? WHERE import_id = \$1')

CONTENT_DOC = {"blocks": [{"type": "paragraph", "data": {"text": "Merhaba dünya"}}]}


def make_story_row(story_id: int = 1, **overrides: Any) -> Dict[str, Any]:
    """Factory function to create a legacy ``story`` row dict."""
    ts = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    row = {
        "id": story_id,
        "title": f"Kısa Başlık {story_id}",
        "message": "Açıklama",
        "content_data": json.dumps(CONTENT_DOC),
        "video": None,
        "images": json.dumps([{"url": f"https://cdn.example.com/{story_id}.jpg", "caption": None}]),
        "brand_id": 10,
        "category_id": None,
        "author_id": 100,
        "published_at": ts,
        "created_at": ts,
        "updated_at": ts,
        "premium": False,
        "stat_views": 42,
        "seo": json.dumps({"description": "seo"}),
        "slug": None,
        "status": "published",
    }
    row.update(overrides)
    return row


def make_record(story_id: int = 1, **overrides: Any) -> SourceRecord:
    return SourceRecord.from_row(make_story_row(story_id, **overrides))


def make_editor(editor_id: str = "ed-1", full_name: str = "Ahmet Yılmaz") -> Editor:
    return Editor(id=editor_id, full_name=full_name, email=None)


def make_author(
    author_id: int = 100,
    full_name: str = "Ahmet Yılmaz",
    editor: Optional[Editor] = None,
    resolved: bool = True,
) -> ResolvedAuthor:
    if resolved and editor is None:
        editor = make_editor(full_name=full_name)
    return ResolvedAuthor(author_id=author_id, full_name=full_name, editor=editor if resolved else None)


def make_brand(slug: str = "gundem", brand_id: Optional[str] = "br-1") -> Brand:
    return Brand(id=brand_id, slug=slug, name=slug.capitalize())


def make_rules(**overrides: Any) -> EditorialRules:
    params: Dict[str, Any] = {
        "column_authors": ("Ayşe Demir",),
        "excluded_pairs": (("gundem", "Sistem Editörü"),),
    }
    params.update(overrides)
    return EditorialRules.build(**params)


class FakeDatabase:
    """Minimal async stand-in for ``pipeline.db_service.Database``."""

    def __init__(
        self,
        *,
        pages: Sequence[Sequence[Dict[str, Any]]] = (),
        fetch_results: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        on_page: Optional[Callable[[int], None]] = None,
        fail_tables: Sequence[str] = (),
    ) -> None:
        self.name = "fake"
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.executed: List[Tuple[str, Tuple[Any, ...]]] = []
        self.pages = [list(p) for p in pages]
        self.fetch_results = fetch_results or {}
        self.on_page = on_page
        self.page_requests = 0
        self.fail_tables = set(fail_tables)
        self.closed = False

    def _insert(self, query: str, args: Tuple[Any, ...]) -> Dict[str, Any]:
        match = _INSERT_RE.search(query)
        assert match, query
        table = match.group(1)
        if table in self.fail_tables:
            raise OSError(f"connection lost while writing {table}")
        columns = [c.strip().strip('"') for c in match.group(2).split(",")]
        row = dict(zip(columns, args))
        self.tables[table].append(row)
        return row

    async def fetch(self, query: str, *args: Any, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        for needle, rows in self.fetch_results.items():
            if needle in query:
                return list(rows)
        return []

    async def fetchrow(self, query: str, *args: Any, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        rows = await self.fetch(query, *args)
        return rows[0] if rows else None

    async def fetchval(self, query: str, *args: Any) -> Any:
        lookup = _SELECT_BY_IMPORT_RE.search(query)
        if lookup:
            for row in self.tables[lookup.group(1)]:
                if row.get("import_id") == args[0]:
                    return row["id"]
            return None
        if query.lstrip().startswith("INSERT INTO"):
            return self._insert(query, args).get("id")
        raise AssertionError(f"unexpected fetchval: {query}")

    async def execute(self, query: str, *args: Any, timeout: Optional[float] = None) -> str:
        self.executed.append((query, args))
        if query.lstrip().startswith("INSERT INTO"):
            self._insert(query, args)
            return "INSERT 0 1"
        return "UPDATE 1"

    async def iter_pages(self, query: str, *args: Any, page_size: int):
        for page in self.pages:
            self.page_requests += 1
            if self.on_page is not None:
                self.on_page(self.page_requests)
            yield page[:page_size]

    async def close(self) -> None:
        self.closed = True


class FakeShortener:
    def __init__(self, result: str = "Kısaltılmış başlık", error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.calls: List[str] = []

    async def shorten(self, title: str) -> str:
        self.calls.append(title)
        if self.error is not None:
            raise self.error
        return self.result


class FakeProber:
    def __init__(self, width: int = 1920, height: int = 1080, *, not_found: bool = False) -> None:
        self.width = width
        self.height = height
        self.not_found = not_found
        self.calls: List[str] = []

    async def probe(self, url: str) -> ProbeResult:
        self.calls.append(url)
        if self.not_found:
            raise VideoNotFound(url)
        return ProbeResult(width=self.width, height=self.height, thumbnail_url=url + ".jpg")


def make_context(
    tmp_path,
    *,
    source: Optional[FakeDatabase] = None,
    destination: Optional[FakeDatabase] = None,
    authors: Optional[Dict[int, ResolvedAuthor]] = None,
    brands: Optional[Dict[int, Brand]] = None,
    rules: Optional[EditorialRules] = None,
    prober: Optional[FakeProber] = None,
    shortener: Optional[FakeShortener] = None,
):
    """PipelineContext wired to in-memory stores."""
    from pipeline.migration_driver import PipelineContext

    destination = destination or FakeDatabase()
    cache = EnrichmentCache.load(tmp_path / "metadata.json")
    author_map = authors if authors is not None else {100: make_author()}
    brand_map = brands if brands is not None else {10: make_brand()}
    return PipelineContext(
        source=source or FakeDatabase(),
        destination=destination,
        cache=cache,
        rules=rules or make_rules(),
        authors=AuthorIndex(authors=author_map, writers=NameIndex.build([], key=lambda w: w.full_name)),
        brands=BrandMapping(brands=brand_map, categories={}),
        enrichment=EnrichmentService(cache, prober=prober, shortener=shortener, timeout_s=5),
        writer=IdempotentWriter(destination),
        policy=TitlePolicy(),
    )
