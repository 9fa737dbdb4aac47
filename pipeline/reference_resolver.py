"""
Reference data for one migration run.

Built once before the story cursor is opened and read-only afterwards:

* :class:`AuthorIndex`: legacy author id → destination editor (fuzzy name
  match), plus fuzzy lookup of column writers.
* :class:`BrandMapping`: legacy brand id / category id → destination brand,
  derived from the hand-mapped taxonomy exports intersected with the live
  destination ``brands`` table by exact slug.

Missing editors and writers are only created when
``AUTO_CREATE_MISSING_IDENTITIES`` is on. Resolution gaps are logged and the
affected stories are skipped later; they never abort the run.
"""

from __future__ import annotations

import asyncio
import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import bcrypt

from migrator.core.logging import get_logger
from migrator.models.editorial_rules import EditorialRules
from migrator.models.reference_data import Brand, Editor, LegacyTaxonomyEntry, ResolvedAuthor, Writer
from migrator.models.source_records import LegacyAuthor, SourceRecord
from pipeline.db_service import Database
from pipeline.name_index import NameIndex

logger = get_logger()

WriterCreator = Callable[[str], Awaitable[Writer]]

EDITOR_ROLE_ID = "editr"


@dataclass
class AuthorIndex:
    authors: Dict[int, ResolvedAuthor]
    writers: NameIndex[Writer]
    create_writer: Optional[WriterCreator] = None
    _created_writers: Dict[str, Writer] = field(default_factory=dict, init=False, repr=False)
    _writer_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def get(self, author_id: Optional[int]) -> Optional[ResolvedAuthor]:
        if author_id is None:
            return None
        return self.authors.get(int(author_id))

    @property
    def unresolved_count(self) -> int:
        return sum(1 for a in self.authors.values() if not a.is_resolved)

    async def writer_for(self, full_name: str) -> Optional[Writer]:
        match = self.writers.best_match(full_name)
        if match is not None:
            return match.candidate
        if self.create_writer is None:
            logger.info("writer_unresolved", full_name=full_name)
            return None
        # One creation per name, even with many column stories in flight.
        async with self._writer_lock:
            existing = self._created_writers.get(full_name)
            if existing is None:
                existing = await self.create_writer(full_name)
                self._created_writers[full_name] = existing
            return existing


@dataclass(frozen=True)
class BrandMapping:
    brands: Dict[int, Brand]
    categories: Dict[int, Brand]
    infographic_brand_ids: FrozenSet[int] = frozenset()
    infographic_category_ids: FrozenSet[int] = frozenset()
    infographic_brand: Optional[Brand] = None

    def resolve(self, record: SourceRecord) -> Optional[Brand]:
        if record.brand_id is not None and record.brand_id in self.brands:
            return self.brands[record.brand_id]
        if record.category_id is not None and record.category_id in self.categories:
            return self.categories[record.category_id]
        if self.infographic_brand is not None and (
            record.brand_id in self.infographic_brand_ids
            or record.category_id in self.infographic_category_ids
        ):
            return self.infographic_brand
        return None


def load_taxonomy_export(path: Union[str, Path]) -> List[LegacyTaxonomyEntry]:
    """Entries of a brands.json / categories.json export that carry a ``mapped`` slug."""
    export_path = Path(path)
    if not export_path.exists():
        logger.warning("taxonomy_export_missing", path=str(export_path))
        return []
    raw = json.loads(export_path.read_text(encoding="utf-8") or "[]")
    entries = []
    for item in raw if isinstance(raw, list) else []:
        entry = LegacyTaxonomyEntry.from_dict(item) if isinstance(item, dict) else None
        if entry is not None:
            entries.append(entry)
    return entries


def build_brand_mapping(
    legacy_brands: Iterable[LegacyTaxonomyEntry],
    legacy_categories: Iterable[LegacyTaxonomyEntry],
    destination_brands: Iterable[Brand],
    *,
    infographic_slug: str,
) -> BrandMapping:
    by_slug: Dict[str, Brand] = {b.slug: b for b in destination_brands}

    def _map(entries: Iterable[LegacyTaxonomyEntry], kind: str) -> Tuple[Dict[int, Brand], FrozenSet[int]]:
        mapping: Dict[int, Brand] = {}
        infographic_ids = set()
        for entry in entries:
            if entry.mapped == infographic_slug:
                infographic_ids.add(entry.id)
                continue
            brand = by_slug.get(entry.mapped)
            if brand is None:
                logger.warning("brand_slug_unmatched", kind=kind, legacy_id=entry.id, mapped=entry.mapped)
                continue
            mapping[entry.id] = brand
        return mapping, frozenset(infographic_ids)

    brands, infographic_brand_ids = _map(legacy_brands, "brand")
    categories, infographic_category_ids = _map(legacy_categories, "category")
    infographic_brand = by_slug.get(infographic_slug) or Brand(
        id=None, slug=infographic_slug, name=infographic_slug.capitalize()
    )
    return BrandMapping(
        brands=brands,
        categories=categories,
        infographic_brand_ids=infographic_brand_ids,
        infographic_category_ids=infographic_category_ids,
        infographic_brand=infographic_brand,
    )


def _hash_placeholder_password() -> str:
    # Random and never communicated; auto-created accounts sign in via password reset.
    token = secrets.token_urlsafe(24).encode("utf-8")
    return bcrypt.hashpw(token, bcrypt.gensalt(rounds=10)).decode("utf-8")


class ReferenceResolver:
    def __init__(
        self,
        source: Database,
        destination: Database,
        *,
        rules: EditorialRules,
        brands_path: Union[str, Path],
        categories_path: Union[str, Path],
        auto_create_identities: bool = False,
        min_score: float = 0.6,
    ) -> None:
        self.source = source
        self.destination = destination
        self.rules = rules
        self.brands_path = brands_path
        self.categories_path = categories_path
        self.auto_create_identities = auto_create_identities
        self.min_score = min_score

    # ---- reads ----------------------------------------------------------

    async def fetch_legacy_authors(self) -> List[LegacyAuthor]:
        rows = await self.source.fetch(
            """
            SELECT author.*, to_json(u) AS "user"
            FROM author
            LEFT JOIN "user" AS u ON author.user_id = u.id
            """
        )
        return [LegacyAuthor.from_row(dict(r)) for r in rows]

    async def fetch_editors(self) -> List[Editor]:
        rows = await self.destination.fetch("SELECT * FROM editors")
        return [Editor.from_row(dict(r)) for r in rows]

    async def fetch_writers(self) -> List[Writer]:
        rows = await self.destination.fetch("SELECT * FROM writers")
        return [Writer.from_row(dict(r)) for r in rows]

    async def fetch_destination_brands(self) -> List[Brand]:
        rows = await self.destination.fetch("SELECT * FROM brands WHERE deleted_at IS NULL")
        return [Brand.from_row(dict(r)) for r in rows]

    # ---- optional identity creation -------------------------------------

    async def create_editor(self, author: LegacyAuthor) -> Editor:
        editor_id = secrets.token_hex(8)
        now = datetime.now(timezone.utc)
        password = await asyncio.to_thread(_hash_placeholder_password)
        await self.destination.execute(
            """
            INSERT INTO editors (id, email, fullname, password, is_active, role_id, is_email_verified, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            editor_id,
            author.contact_email,
            author.full_name,
            password,
            True,
            EDITOR_ROLE_ID,
            True,
            now,
            now,
        )
        logger.info("editor_created", author_id=author.id, editor_id=editor_id, full_name=author.full_name)
        return Editor(id=editor_id, full_name=author.full_name, email=author.contact_email)

    async def create_writer(self, full_name: str) -> Writer:
        writer_id = secrets.token_hex(8)
        now = datetime.now(timezone.utc)
        await self.destination.execute(
            """
            INSERT INTO writers (id, fullname, is_active, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5)
            """,
            writer_id,
            full_name,
            True,
            now,
            now,
        )
        logger.info("writer_created", writer_id=writer_id, full_name=full_name)
        return Writer(id=writer_id, full_name=full_name)

    # ---- resolution -----------------------------------------------------

    async def resolve_authors(self) -> AuthorIndex:
        legacy_authors = await self.fetch_legacy_authors()
        editors = await self.fetch_editors()
        writers = await self.fetch_writers()

        editor_index = NameIndex.build(editors, key=lambda e: e.full_name, min_score=self.min_score)
        writer_index = NameIndex.build(writers, key=lambda w: w.full_name, min_score=self.min_score)

        resolved: Dict[int, ResolvedAuthor] = {}
        for author in legacy_authors:
            match = editor_index.best_match(author.full_name)
            editor: Optional[Editor] = match.candidate if match else None
            if editor is None and self.auto_create_identities and author.full_name:
                try:
                    editor = await self.create_editor(author)
                except Exception as exc:
                    logger.error("editor_create_failed", author_id=author.id, error=str(exc))
            if editor is None:
                logger.info("author_unresolved", author_id=author.id, full_name=author.full_name)
            resolved[author.id] = ResolvedAuthor(author_id=author.id, full_name=author.full_name, editor=editor)

        index = AuthorIndex(
            authors=resolved,
            writers=writer_index,
            create_writer=self.create_writer if self.auto_create_identities else None,
        )
        logger.info(
            "authors_resolved",
            authors=len(resolved),
            unresolved=index.unresolved_count,
            editors=len(editors),
            writers=len(writers),
        )
        return index

    async def resolve_brands(self) -> BrandMapping:
        destination_brands = await self.fetch_destination_brands()
        mapping = build_brand_mapping(
            load_taxonomy_export(self.brands_path),
            load_taxonomy_export(self.categories_path),
            destination_brands,
            infographic_slug=self.rules.infographic_slug,
        )
        logger.info(
            "brands_resolved",
            brands=len(mapping.brands),
            categories=len(mapping.categories),
            infographic_ids=len(mapping.infographic_brand_ids) + len(mapping.infographic_category_ids),
        )
        return mapping

    async def resolve(self) -> Tuple[AuthorIndex, BrandMapping]:
        authors = await self.resolve_authors()
        brands = await self.resolve_brands()
        return authors, brands
