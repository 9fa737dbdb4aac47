from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import asyncpg

from migrator.core.logging import get_logger
from pipeline.db_service import Database
from pipeline.errors import SourceUnavailable
from pipeline.text_normalization import clean_title, slugify

logger = get_logger()

# table -> text columns that get re-cleaned
CLEANUP_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "news": ("slug", "title", "list_title"),
    "shorts": ("slug", "title"),
}


def cleaned_values(row: Mapping[str, Any], columns: Sequence[str]) -> Dict[str, str]:
    """Only the columns whose cleaned value differs from what is stored."""
    changes: Dict[str, str] = {}
    for column in columns:
        current: Optional[str] = row.get(column)
        if not current:
            continue
        updated = slugify(current) if column == "slug" else clean_title(current)
        if updated and updated != current:
            changes[column] = updated
    return changes


def build_update(table: str, row_id: Any, changes: Mapping[str, str]) -> Tuple[str, List[Any]]:
    assignments = ", ".join(f'"{column}" = ${i}' for i, column in enumerate(changes, start=1))
    sql = f'UPDATE "{table}" SET {assignments} WHERE "id" = ${len(changes) + 1}'
    return sql, [*changes.values(), row_id]


async def cleanup_table(
    destination: Database,
    table: str,
    *,
    read_count: int,
    batch_count: int,
) -> Dict[str, int]:
    if table not in CLEANUP_COLUMNS:
        raise ValueError(f"no title cleanup defined for table {table!r}")
    columns = CLEANUP_COLUMNS[table]
    counters = {"scanned": 0, "updated": 0, "unchanged": 0, "failed": 0}
    column_list = ", ".join(f'"{c}"' for c in ("id", *columns))
    order = ' ORDER BY "published_at" DESC' if table == "news" else ""
    query = f'SELECT {column_list} FROM "{table}"{order}'

    async def _clean(row: Mapping[str, Any]) -> None:
        counters["scanned"] += 1
        changes = cleaned_values(row, columns)
        if not changes:
            counters["unchanged"] += 1
            return
        sql, values = build_update(table, row["id"], changes)
        try:
            await destination.execute(sql, *values)
        except (asyncpg.PostgresError, OSError) as exc:
            counters["failed"] += 1
            logger.error("title_cleanup_failed", table=table, row_id=str(row["id"]), error=str(exc))
            return
        counters["updated"] += 1
        logger.debug("title_cleaned", table=table, row_id=str(row["id"]), columns=sorted(changes))

    batch_count = max(1, batch_count)
    try:
        async for page in destination.iter_pages(query, page_size=read_count):
            pending: List["asyncio.Task[None]"] = []
            for row in page:
                pending.append(asyncio.create_task(_clean(row)))
                if len(pending) >= batch_count:
                    await asyncio.gather(*pending)
                    pending = []
            if pending:
                await asyncio.gather(*pending)
            logger.info("title_cleanup_page", table=table, rows=len(page), **counters)
    except (asyncpg.PostgresError, OSError) as exc:
        raise SourceUnavailable(f"{table} cursor failed: {exc}") from exc

    logger.info("title_cleanup_table_finished", table=table, **counters)
    return counters


async def cleanup_titles(
    destination: Database,
    *,
    tables: Sequence[str] = ("news", "shorts"),
    read_count: int,
    batch_count: int,
) -> Dict[str, Dict[str, int]]:
    results: Dict[str, Dict[str, int]] = {}
    for table in tables:
        results[table] = await cleanup_table(destination, table, read_count=read_count, batch_count=batch_count)
    return results
