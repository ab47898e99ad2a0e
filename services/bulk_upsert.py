from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from core.batching import chunk
from repos.db import run_with_retry, transaction


class BatchUpsertRepo(Protocol):
    async def upsert_batch(self, *, shop_id: int, rows: Sequence[Mapping[str, Any]]) -> int: ...


RepoFactory = Callable[[Any], BatchUpsertRepo]


class Pool(Protocol):
    def connection(self) -> Any: ...


class BulkUpsertBatcher:
    """Persists entities in fixed-size chunks, one transaction per chunk.

    The first failing chunk is rolled back and its error propagates; chunks
    committed before it stay committed. A transient connection failure retries
    the whole chunk once, which is safe because the merge is idempotent.
    """

    def __init__(
        self,
        *,
        pool: Pool,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        retry_delay_sec: float = 0.2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._pool = pool
        self._logger = logger or logging.getLogger(__name__)
        self._retry_delay_sec = retry_delay_sec
        self._sleep = sleep

    async def upsert(
        self,
        entities: Sequence[Mapping[str, Any]],
        *,
        repo_factory: RepoFactory,
        shop_id: int,
        batch_size: int = 1000,
    ) -> int:
        if not entities:
            return 0
        if not shop_id:
            raise ValueError("shop_id is required for upsert")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        batches = chunk(entities, batch_size)
        total = 0
        for index, batch in enumerate(batches, start=1):
            affected = await run_with_retry(
                lambda batch=batch: self._apply_batch(
                    batch, repo_factory=repo_factory, shop_id=shop_id
                ),
                delay_sec=self._retry_delay_sec,
                sleep=self._sleep,
            )
            total += affected
            self._logger.info(
                "upsert batch committed: batch=%s/%s rows=%s affected=%s",
                index,
                len(batches),
                len(batch),
                affected,
            )
        return total

    async def _apply_batch(
        self,
        batch: Sequence[Mapping[str, Any]],
        *,
        repo_factory: RepoFactory,
        shop_id: int,
    ) -> int:
        async with self._pool.connection() as conn:
            async with transaction(conn):
                repo = repo_factory(conn)
                return await repo.upsert_batch(shop_id=shop_id, rows=batch)
