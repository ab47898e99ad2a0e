from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence

from psycopg import sql

from core.errors import TokenNotFoundError
from repos.db import run_with_retry


class Cursor(Protocol):
    async def execute(self, query: Any, params: Sequence[object] | None = None) -> Any: ...
    async def fetchone(self) -> Optional[Sequence[object]]: ...


class Pool(Protocol):
    def connection(self) -> Any: ...


class TokenRepo:
    def __init__(
        self,
        *,
        pool: Pool,
        schema: str,
        table: str,
        provider: str = "shopee",
        retry_delay_sec: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._schema = schema
        self._table = table
        self._provider = provider
        self._retry_delay_sec = retry_delay_sec
        self._sleep = sleep

    def build_query(self) -> sql.Composed:
        return sql.SQL("select access_token from {} where provider = %s limit 1").format(
            sql.Identifier(self._schema, self._table)
        )

    async def fetch_access_token(self) -> str:
        query = self.build_query()

        async def fetch() -> Optional[Sequence[object]]:
            async with self._pool.connection() as conn:
                cur = conn.cursor()
                try:
                    await cur.execute(query, (self._provider,))
                    return await cur.fetchone()
                finally:
                    await cur.close()

        row = await run_with_retry(fetch, delay_sec=self._retry_delay_sec, sleep=self._sleep)
        token = row[0] if row else None
        if not token:
            raise TokenNotFoundError(
                f"no access_token in {self._schema}.{self._table} for provider={self._provider!r}"
            )
        return str(token)
