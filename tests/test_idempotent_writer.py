from __future__ import annotations

import json

import pytest

from migrator.models.destination_payloads import Article, Column, Infographic, Short
from pipeline.errors import WriteFailure
from pipeline.idempotent_writer import AlreadyExists, IdempotentWriter, Inserted, build_insert
from tests.fixtures import FakeDatabase


def _article(import_id: str = "1", payload_id: str = "a1") -> Article:
    return Article(
        id=payload_id,
        slug=f"baslik-{payload_id}",
        title="Başlık",
        brand_id="br-1",
        seo={"description": "seo"},
        import_id=import_id,
        content="<p>x</p>",
        thumbnails={"original": "https://cdn.example.com/1.jpg"},
        created_by="ed-1",
    )


def test_build_insert_quotes_columns_and_numbers_placeholders():
    sql, values = build_insert("columns", {"id": "c1", "createdAt": "now"})
    assert sql == 'INSERT INTO "columns" ("id", "createdAt") VALUES ($1, $2) RETURNING id'
    assert values == ["c1", "now"]


def test_payload_rows_serialize_json_fields_and_rename_columns():
    article_row = _article().to_row()
    assert "kind" not in article_row
    assert json.loads(article_row["seo"]) == {"description": "seo"}
    assert json.loads(article_row["thumbnails"])["original"].endswith("1.jpg")

    column_row = Column(id="c1", slug="s", title="t", import_id="3", content="<p/>").to_row()
    assert "createdAt" in column_row and "created_at" not in column_row

    infographic_row = Infographic(id="i1", slug="s", title="t", import_id="4", images=["a.png"]).to_row()
    assert json.loads(infographic_row["images"]) == ["a.png"]


@pytest.mark.asyncio
async def test_second_write_is_already_exists_and_adds_no_relation():
    db = FakeDatabase()
    writer = IdempotentWriter(db)

    first = await writer.write(_article(payload_id="a1"))
    second = await writer.write(_article(payload_id="a2"))

    assert first == Inserted(table="news", row_id="a1")
    assert second == AlreadyExists(table="news", row_id="a1")
    assert len(db.tables["news"]) == 1
    assert len(db.tables["news_writers_pivot"]) == 1
    pivot = db.tables["news_writers_pivot"][0]
    assert pivot["news_id"] == "a1"
    assert pivot["editor_id"] == "ed-1"


@pytest.mark.asyncio
async def test_import_key_is_scoped_per_table():
    db = FakeDatabase()
    writer = IdempotentWriter(db)

    await writer.write(_article(import_id="1"))
    result = await writer.write(Infographic(id="i1", slug="s-i1", title="t", import_id="1", images=["a.png"]))

    assert isinstance(result, Inserted)
    assert result.table == "infographics"


@pytest.mark.asyncio
async def test_short_has_no_author_relation():
    db = FakeDatabase()
    await IdempotentWriter(db).write(
        Short(id="s1", slug="kisa-s1", title="Kısa", import_id="9", url="https://v.example.com/a.mp4", created_by="ed-1")
    )
    assert len(db.tables["shorts"]) == 1
    assert db.executed == []


@pytest.mark.asyncio
async def test_insert_failure_is_wrapped():
    db = FakeDatabase(fail_tables=["news"])
    with pytest.raises(WriteFailure) as exc_info:
        await IdempotentWriter(db).write(_article())
    assert exc_info.value.table == "news"
    assert exc_info.value.import_id == "1"
    assert db.tables["news_writers_pivot"] == []


@pytest.mark.asyncio
async def test_relation_failure_is_wrapped():
    db = FakeDatabase(fail_tables=["news_writers_pivot"])
    with pytest.raises(WriteFailure):
        await IdempotentWriter(db).write(_article())
    assert len(db.tables["news"]) == 1


@pytest.mark.asyncio
async def test_rejects_non_payload():
    with pytest.raises(TypeError):
        await IdempotentWriter(FakeDatabase()).write({"kind": "article"})
