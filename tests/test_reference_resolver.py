from __future__ import annotations

import json

import bcrypt
import pytest

from migrator.models.reference_data import Brand, LegacyTaxonomyEntry, Writer
from pipeline.name_index import NameIndex
from pipeline.reference_resolver import (
    AuthorIndex,
    ReferenceResolver,
    build_brand_mapping,
    load_taxonomy_export,
)
from tests.fixtures import FakeDatabase, make_record, make_rules

DESTINATION_BRANDS = [
    {"id": "b-gundem", "slug": "gundem", "name": "Gündem"},
    {"id": "b-spor", "slug": "spor", "name": "Spor"},
    {"id": "b-yakin", "slug": "yakin-plan", "name": "Yakın Plan"},
]


def _entry(entry_id: int, mapped: str) -> LegacyTaxonomyEntry:
    return LegacyTaxonomyEntry(id=entry_id, slug=f"legacy-{entry_id}", name=f"Legacy {entry_id}", mapped=mapped)


def _write_exports(tmp_path, brands, categories):
    brands_path = tmp_path / "brands.json"
    categories_path = tmp_path / "categories.json"
    brands_path.write_text(json.dumps(brands), encoding="utf-8")
    categories_path.write_text(json.dumps(categories), encoding="utf-8")
    return brands_path, categories_path


def test_load_taxonomy_export_drops_entries_without_mapping(tmp_path):
    path = tmp_path / "brands.json"
    path.write_text(
        json.dumps(
            [
                {"id": 1, "slug": "haber", "name": "Haber", "mapped": "gundem"},
                {"id": 2, "slug": "eski", "name": "Eski", "mapped": ""},
                {"id": 3, "slug": "bos", "name": "Boş"},
            ]
        ),
        encoding="utf-8",
    )
    entries = load_taxonomy_export(path)
    assert [e.id for e in entries] == [1]


def test_load_taxonomy_export_missing_file(tmp_path):
    assert load_taxonomy_export(tmp_path / "nope.json") == []


def test_build_brand_mapping_exact_slug_and_unmatched_dropped():
    destination = [Brand.from_row(row) for row in DESTINATION_BRANDS]
    mapping = build_brand_mapping(
        [_entry(1, "gundem"), _entry(2, "olmayan-marka")],
        [_entry(20, "spor")],
        destination,
        infographic_slug="infografik",
    )

    assert mapping.brands[1].id == "b-gundem"
    assert 2 not in mapping.brands
    assert mapping.categories[20].slug == "spor"


def test_infographic_entries_stay_out_of_brand_maps():
    destination = [Brand.from_row(row) for row in DESTINATION_BRANDS]
    mapping = build_brand_mapping(
        [_entry(1, "gundem"), _entry(5, "infografik")],
        [_entry(50, "infografik")],
        destination,
        infographic_slug="infografik",
    )

    assert 5 not in mapping.brands
    assert 50 not in mapping.categories
    assert mapping.infographic_brand_ids == frozenset({5})
    assert mapping.infographic_category_ids == frozenset({50})
    assert mapping.infographic_brand.id is None

    record = make_record(1, brand_id=5, category_id=None)
    assert mapping.resolve(record).slug == "infografik"


def test_brand_takes_precedence_over_category():
    destination = [Brand.from_row(row) for row in DESTINATION_BRANDS]
    mapping = build_brand_mapping(
        [_entry(1, "gundem")], [_entry(20, "spor")], destination, infographic_slug="infografik"
    )
    assert mapping.resolve(make_record(1, brand_id=1, category_id=20)).slug == "gundem"
    assert mapping.resolve(make_record(1, brand_id=99, category_id=20)).slug == "spor"
    assert mapping.resolve(make_record(1, brand_id=99, category_id=99)) is None


def _resolver(tmp_path, destination, *, auto_create=False):
    brands_path, categories_path = _write_exports(
        tmp_path,
        [{"id": 1, "slug": "haber", "name": "Haber", "mapped": "gundem"}],
        [{"id": 20, "slug": "futbol", "name": "Futbol", "mapped": "spor"}],
    )
    source = FakeDatabase(
        fetch_results={
            "FROM author": [
                {"id": 100, "full_name": "Ahmet Yilmaz", "email": None, "user": json.dumps({"email": "a@example.com"})},
                {"id": 101, "full_name": "Zeynep Arslan", "email": "z@example.com", "user": None},
            ]
        }
    )
    return ReferenceResolver(
        source,
        destination,
        rules=make_rules(),
        brands_path=brands_path,
        categories_path=categories_path,
        auto_create_identities=auto_create,
    )


def _destination():
    return FakeDatabase(
        fetch_results={
            "FROM editors": [{"id": "ed-1", "fullname": "Ahmet Yılmaz", "email": "ahmet@example.com"}],
            "FROM writers": [{"id": "wr-1", "fullname": "Ayşe Demir"}],
            "FROM brands": DESTINATION_BRANDS,
        }
    )


@pytest.mark.asyncio
async def test_resolve_matches_authors_and_leaves_unknown_unresolved(tmp_path):
    destination = _destination()
    authors, brands = await _resolver(tmp_path, destination).resolve()

    assert authors.get(100).editor.id == "ed-1"
    assert not authors.get(101).is_resolved
    assert authors.unresolved_count == 1
    assert brands.brands[1].slug == "gundem"
    assert brands.categories[20].slug == "spor"
    assert destination.tables == {}


@pytest.mark.asyncio
async def test_resolve_auto_creates_missing_editor_when_enabled(tmp_path):
    destination = _destination()
    authors, _ = await _resolver(tmp_path, destination, auto_create=True).resolve()

    created = authors.get(101).editor
    assert created is not None
    rows = destination.tables["editors"]
    assert len(rows) == 1
    assert rows[0]["fullname"] == "Zeynep Arslan"
    assert rows[0]["email"] == "z@example.com"
    assert rows[0]["role_id"] == "editr"
    assert rows[0]["password"].startswith("$2")
    assert not bcrypt.checkpw(b"123456", rows[0]["password"].encode("utf-8"))


@pytest.mark.asyncio
async def test_writer_lookup_fuzzy_and_created_once():
    created = []

    async def create_writer(full_name):
        created.append(full_name)
        return Writer(id=f"new-{len(created)}", full_name=full_name)

    index = AuthorIndex(
        authors={},
        writers=NameIndex.build([Writer(id="wr-1", full_name="Ayşe Demir")], key=lambda w: w.full_name),
        create_writer=create_writer,
    )

    assert (await index.writer_for("Ayse Demir")).id == "wr-1"
    first = await index.writer_for("Mehmet Kaya")
    second = await index.writer_for("Mehmet Kaya")
    assert first == second
    assert created == ["Mehmet Kaya"]


@pytest.mark.asyncio
async def test_writer_lookup_without_creation_returns_none():
    index = AuthorIndex(authors={}, writers=NameIndex.build([], key=lambda w: w.full_name))
    assert await index.writer_for("Mehmet Kaya") is None
