from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """``asyncio.gather`` that cancels the remaining siblings when one of them fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        # wait for the cancelled siblings so none outlives the shared clients
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
