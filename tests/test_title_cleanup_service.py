from __future__ import annotations

import pytest

from pipeline.errors import SourceUnavailable
from pipeline.title_cleanup_service import build_update, cleaned_values, cleanup_table, cleanup_titles
from tests.fixtures import FakeDatabase


def test_cleaned_values_returns_only_changed_columns():
    row = {"id": "n1", "slug": "Son-Dakika--Haber", "title": "🔴 Son dakika.", "list_title": "Son dakika"}
    assert cleaned_values(row, ("slug", "title", "list_title")) == {
        "slug": "son-dakika-haber",
        "title": "Son dakika",
    }


def test_cleaned_values_ignores_empty_columns():
    assert cleaned_values({"id": "n1", "slug": None, "title": "Temiz"}, ("slug", "title")) == {}


def test_build_update_numbers_placeholders_after_changes():
    sql, values = build_update("news", "n1", {"slug": "a", "title": "b"})
    assert sql == 'UPDATE "news" SET "slug" = $1, "title" = $2 WHERE "id" = $3'
    assert values == ["a", "b", "n1"]


@pytest.mark.asyncio
async def test_cleanup_table_updates_changed_rows_only():
    rows = [
        {"id": "s1", "slug": "kisa-s1", "title": "Kısa."},
        {"id": "s2", "slug": "temiz-s2", "title": "Temiz"},
    ]
    db = FakeDatabase(pages=[rows])

    counters = await cleanup_table(db, "shorts", read_count=100, batch_count=10)

    assert counters == {"scanned": 2, "updated": 1, "unchanged": 1, "failed": 0}
    assert len(db.executed) == 1
    sql, args = db.executed[0]
    assert sql.startswith('UPDATE "shorts" SET "title" = $1')
    assert args == ("Kısa", "s1")


@pytest.mark.asyncio
async def test_cleanup_row_failure_is_isolated():
    class FlakyDatabase(FakeDatabase):
        async def execute(self, query, *args, timeout=None):
            if args[-1] == "n1":
                raise OSError("connection reset")
            return await super().execute(query, *args)

    rows = [
        {"id": "n1", "slug": "a", "title": "Bir.", "list_title": None},
        {"id": "n2", "slug": "b", "title": "İki.", "list_title": None},
    ]
    counters = await cleanup_table(FlakyDatabase(pages=[rows]), "news", read_count=100, batch_count=10)

    assert counters["failed"] == 1
    assert counters["updated"] == 1


@pytest.mark.asyncio
async def test_cleanup_titles_runs_each_table():
    db = FakeDatabase(pages=[[{"id": "x", "slug": "x", "title": "x"}]])
    results = await cleanup_titles(db, tables=["news", "shorts"], read_count=10, batch_count=5)
    assert set(results) == {"news", "shorts"}


@pytest.mark.asyncio
async def test_unknown_table_is_rejected():
    with pytest.raises(ValueError):
        await cleanup_table(FakeDatabase(), "videos", read_count=10, batch_count=5)


@pytest.mark.asyncio
async def test_cursor_failure_surfaces_as_source_unavailable():
    class BrokenCursor(FakeDatabase):
        async def iter_pages(self, query, *args, page_size):
            raise OSError("cursor closed")
            yield []

    with pytest.raises(SourceUnavailable):
        await cleanup_table(BrokenCursor(), "news", read_count=10, batch_count=5)
