from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import asyncpg

from migrator.core.logging import get_logger
from migrator.models.destination_payloads import PAYLOAD_TYPES, DestinationPayload
from pipeline.db_service import Database
from pipeline.errors import WriteFailure

logger = get_logger()


@dataclass(frozen=True)
class Inserted:
    table: str
    row_id: str


@dataclass(frozen=True)
class AlreadyExists:
    table: str
    row_id: str


WriteResult = Union[Inserted, AlreadyExists]


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def build_insert(table: str, row: Dict[str, Any]) -> tuple[str, List[Any]]:
    columns = list(row.keys())
    placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
    sql = (
        f"INSERT INTO {_quote(table)} ({', '.join(_quote(c) for c in columns)}) "
        f"VALUES ({placeholders}) RETURNING id"
    )
    return sql, [row[c] for c in columns]


class IdempotentWriter:
    """
    Inserts one payload per call, keyed on ``import_id``. A row that already
    carries the payload's import key is left untouched and reported as
    :class:`AlreadyExists`, so re-running a migration is a no-op for stories
    that made it across earlier.
    """

    def __init__(self, destination: Database) -> None:
        self.destination = destination

    async def find_existing(self, table: str, import_id: str) -> Optional[str]:
        row_id = await self.destination.fetchval(
            f"SELECT id FROM {_quote(table)} WHERE import_id = $1 LIMIT 1",
            import_id,
        )
        return str(row_id) if row_id is not None else None

    async def write(self, payload: DestinationPayload) -> WriteResult:
        if not isinstance(payload, PAYLOAD_TYPES):
            raise TypeError(f"not a destination payload: {type(payload).__name__}")
        table = payload.TABLE

        existing = await self.find_existing(table, payload.import_id)
        if existing is not None:
            logger.debug("payload_already_exists", table=table, import_id=payload.import_id, row_id=existing)
            return AlreadyExists(table=table, row_id=existing)

        sql, values = build_insert(table, payload.to_row())
        try:
            row_id = await self.destination.fetchval(sql, *values)
            row_id = str(row_id) if row_id is not None else payload.id
            await self._link_author(payload, row_id)
        except (asyncpg.PostgresError, OSError) as exc:
            raise WriteFailure(table, payload.import_id, exc) from exc

        logger.debug("payload_inserted", table=table, kind=payload.kind, import_id=payload.import_id, row_id=row_id)
        return Inserted(table=table, row_id=row_id)

    async def _link_author(self, payload: DestinationPayload, row_id: str) -> None:
        relation = payload.AUTHOR_RELATION
        editor_id = payload.author_editor_id
        if relation is None or editor_id is None:
            return
        relation_table, foreign_key = relation
        now = datetime.now(timezone.utc)
        await self.destination.execute(
            f"INSERT INTO {_quote(relation_table)} ({_quote(foreign_key)}, editor_id, \"createdAt\", \"updatedAt\") "
            "VALUES ($1, $2, $3, $4)",
            row_id,
            editor_id,
            now,
            now,
        )
