from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

import psycopg
from psycopg_pool import AsyncConnectionPool

from core.errors import DbLogicError, DbTransientError

T = TypeVar("T")

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = (
    "connection terminated",
    "terminating connection",
    "server closed the connection",
    "connection reset",
    "econnreset",
    "broken pipe",
    "epipe",
    "enet",
    "timeout",
    "timed out",
)


async def create_pool(
    *,
    database_url: str,
    max_size: int = 5,
    max_idle_sec: float = 10.0,
    timeout_sec: float = 3.0,
) -> AsyncConnectionPool:
    # callers beyond max_size wait up to timeout_sec for a free connection
    pool = AsyncConnectionPool(
        conninfo=database_url,
        min_size=1,
        max_size=max_size,
        max_idle=max_idle_sec,
        timeout=timeout_sec,
        open=False,
    )
    await pool.open()
    return pool


async def close_pools(*pools: AsyncConnectionPool | None) -> None:
    for pool in pools:
        if pool is None:
            continue
        try:
            await pool.close()
        except Exception:
            logger.exception("failed to close connection pool")


@asynccontextmanager
async def transaction(conn: Any) -> AsyncIterator[Any]:
    try:
        yield conn
        await conn.commit()
    except BaseException:
        await conn.rollback()
        raise


def is_transient_db_error(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionResetError, BrokenPipeError, TimeoutError)):
        return True
    if isinstance(exc, (psycopg.IntegrityError, psycopg.ProgrammingError, psycopg.DataError)):
        return False
    message = str(exc).lower()
    if isinstance(exc, psycopg.OperationalError) and "connection" in message:
        return True
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 1,
    delay_sec: float = 0.2,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_transient_db_error(exc):
                if isinstance(exc, psycopg.Error):
                    raise DbLogicError(str(exc)) from exc
                raise
            if attempt >= retries:
                raise DbTransientError(str(exc)) from exc
            attempt += 1
            logger.warning(
                "transient db error, retrying: attempt=%s delay_sec=%s error=%s",
                attempt,
                delay_sec,
                exc,
            )
            await sleep(delay_sec)
