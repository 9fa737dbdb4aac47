# pipeline/db_service.py
from __future__ import annotations

import os
from typing import Any, AsyncIterator, List, Optional
from time import monotonic
from urllib.parse import urlparse

import asyncpg

from migrator.core.logging import get_logger
from pipeline.errors import SourceUnavailable

logger = get_logger()

STATEMENT_TIMEOUT_MS = int(os.getenv("STATEMENT_TIMEOUT_MS", "120000"))
DB_POOL_MIN_SIZE = int(os.getenv("DB_POOL_MIN_SIZE", "1"))
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", "10"))
DEFAULT_QUERY_TIMEOUT_MS = int(os.getenv("DEFAULT_QUERY_TIMEOUT_MS", "60000"))
SLOW_QUERY_THRESHOLD_MS = 1_000  # 1 second


def normalize_database_url(raw_dsn: str) -> str:
    """
    Only the scheme is rewritten (postgresql+asyncpg:// → postgresql://);
    user, encoded password, host, port and database stay exactly as given.
    """
    raw_dsn = (raw_dsn or "").strip()
    if raw_dsn.startswith("postgresql+asyncpg://"):
        raw_dsn = "postgresql://" + raw_dsn[len("postgresql+asyncpg://"):]
    return raw_dsn


class Database:
    """
    One asyncpg pool for one store. The migration holds two of these (source
    and destination) inside the pipeline context; there is no module-level pool.
    """

    def __init__(self, pool: asyncpg.Pool, *, name: str) -> None:
        self._pool = pool
        self.name = name

    @classmethod
    async def connect(
        cls,
        dsn: str,
        *,
        name: str,
        min_size: int = DB_POOL_MIN_SIZE,
        max_size: int = DB_POOL_MAX_SIZE,
    ) -> "Database":
        final_dsn = normalize_database_url(dsn)
        parsed = urlparse(final_dsn)
        logger.info(
            "db_pool_initializing",
            store=name,
            dsn_host=parsed.hostname,
            dsn_port=parsed.port,
        )
        try:
            pool = await asyncpg.create_pool(
                dsn=final_dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=DEFAULT_QUERY_TIMEOUT_MS / 1000,
                statement_cache_size=0,
                server_settings={
                    "application_name": f"story-migrator-{name}",
                    "statement_timeout": str(STATEMENT_TIMEOUT_MS),
                },
            )
        except (OSError, asyncpg.PostgresError) as exc:
            raise SourceUnavailable(f"cannot connect to {name} store: {exc}") from exc
        return cls(pool, name=name)

    async def close(self) -> None:
        await self._pool.close()

    async def _execute_with_timing(
        self,
        conn: asyncpg.Connection,
        method: str,
        query: str,
        *args: Any,
        timeout: Optional[float] = None,
    ) -> Any:
        start_ms = monotonic() * 1000
        try:
            func = getattr(conn, method)
            effective_timeout = (
                timeout if timeout is not None else DEFAULT_QUERY_TIMEOUT_MS / 1000
            )
            return await func(query, *args, timeout=effective_timeout)
        finally:
            duration_ms = (monotonic() * 1000) - start_ms
            if duration_ms >= SLOW_QUERY_THRESHOLD_MS:
                logger.warning(
                    "db_slow_query",
                    store=self.name,
                    duration_ms=round(duration_ms, 2),
                    method=method,
                    arg_count=len(args),
                    query_snippet=query.strip().split("\n")[0][:200],
                )

    async def fetch(self, query: str, *args: Any, timeout: Optional[float] = None) -> List[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await self._execute_with_timing(conn, "fetch", query, *args, timeout=timeout)

    async def fetchrow(self, query: str, *args: Any, timeout: Optional[float] = None) -> Optional[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await self._execute_with_timing(conn, "fetchrow", query, *args, timeout=timeout)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self._pool.acquire() as conn:
            return await self._execute_with_timing(conn, "fetchval", query, *args)

    async def execute(self, query: str, *args: Any, timeout: Optional[float] = None) -> str:
        async with self._pool.acquire() as conn:
            return await self._execute_with_timing(conn, "execute", query, *args, timeout=timeout)

    async def iter_pages(
        self,
        query: str,
        *args: Any,
        page_size: int,
    ) -> AsyncIterator[List[asyncpg.Record]]:
        """
        Server-side cursor over ``query``; yields pages of at most ``page_size`` rows.
        The next page is only requested when the caller resumes the generator.
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction(readonly=True):
                cursor = await conn.cursor(query, *args)
                while True:
                    rows = await cursor.fetch(page_size)
                    if not rows:
                        break
                    yield rows
                    if len(rows) < page_size:
                        break
