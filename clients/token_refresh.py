from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.credentials import Credentials

TokenFetcher = Callable[[], Awaitable[str]]


class TokenRefreshCoordinator:
    """Single-flight access token refresh.

    Concurrent callers of ``refresh_once`` while a fetch is pending all await the
    same task, so only one underlying fetch is issued. The slot is cleared when
    the fetch settles, success or failure, and the next demand starts a new one.
    Each refresh installs a new immutable ``Credentials`` snapshot.
    """

    def __init__(
        self,
        *,
        fetch_token: TokenFetcher,
        initial: Credentials,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._fetch_token = fetch_token
        self._credentials = initial
        self._in_flight: Optional[asyncio.Task[str]] = None
        self._logger = logger or logging.getLogger(__name__)

    @property
    def credentials(self) -> Credentials:
        return self._credentials

    @property
    def refreshing(self) -> bool:
        return self._in_flight is not None

    async def refresh_once(self) -> str:
        # no await between the check and the assignment, so the slot is claimed atomically
        if self._in_flight is None:
            self._in_flight = asyncio.ensure_future(self._refresh())
        return await asyncio.shield(self._in_flight)

    async def load(self) -> Credentials:
        await self.refresh_once()
        return self._credentials

    async def _refresh(self) -> str:
        try:
            self._logger.info("token refresh start")
            token = await self._fetch_token()
            self._credentials = self._credentials.with_token(token)
            self._logger.info("token refresh done")
            return token
        except Exception:
            self._logger.exception("token refresh failed")
            raise
        finally:
            self._in_flight = None
