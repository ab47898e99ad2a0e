from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT))

import asyncio  # noqa: E402

from clients.token_refresh import TokenRefreshCoordinator  # noqa: E402
from core.credentials import Credentials  # noqa: E402

CREDS = Credentials(partner_id=1, partner_key="k", host="https://h", shop_id=2)


@pytest.mark.unit
def test_concurrent_refresh_demands_share_one_fetch() -> None:
    async def scenario():
        calls = 0
        gate = asyncio.Event()

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            await gate.wait()
            return "token-1"

        coordinator = TokenRefreshCoordinator(fetch_token=fetch, initial=CREDS)
        waiters = [asyncio.ensure_future(coordinator.refresh_once()) for _ in range(10)]
        await asyncio.sleep(0)
        in_flight = coordinator.refreshing
        gate.set()
        tokens = await asyncio.gather(*waiters)
        return calls, tokens, in_flight, coordinator

    calls, tokens, in_flight, coordinator = asyncio.run(scenario())

    assert calls == 1
    assert tokens == ["token-1"] * 10
    assert in_flight is True
    assert coordinator.refreshing is False
    assert coordinator.credentials.access_token == "token-1"


@pytest.mark.unit
def test_next_demand_after_settle_starts_new_fetch() -> None:
    async def scenario():
        issued = []

        async def fetch() -> str:
            issued.append(len(issued) + 1)
            return f"token-{len(issued)}"

        coordinator = TokenRefreshCoordinator(fetch_token=fetch, initial=CREDS)
        first = await coordinator.refresh_once()
        second = await coordinator.refresh_once()
        return issued, first, second, coordinator

    issued, first, second, coordinator = asyncio.run(scenario())

    assert issued == [1, 2]
    assert (first, second) == ("token-1", "token-2")
    assert coordinator.credentials.access_token == "token-2"


@pytest.mark.unit
def test_failure_propagates_to_every_waiter_and_clears_slot() -> None:
    async def scenario():
        calls = 0
        gate = asyncio.Event()

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            await gate.wait()
            raise RuntimeError("token store down")

        coordinator = TokenRefreshCoordinator(fetch_token=fetch, initial=CREDS)
        waiters = [asyncio.ensure_future(coordinator.refresh_once()) for _ in range(5)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)
        return calls, results, coordinator

    calls, results, coordinator = asyncio.run(scenario())

    assert calls == 1
    assert all(isinstance(result, RuntimeError) for result in results)
    assert len({id(result) for result in results}) == 1
    assert coordinator.refreshing is False
    assert coordinator.credentials.access_token == ""


@pytest.mark.unit
def test_cancelled_waiter_does_not_cancel_shared_fetch() -> None:
    async def scenario():
        gate = asyncio.Event()

        async def fetch() -> str:
            await gate.wait()
            return "token-1"

        coordinator = TokenRefreshCoordinator(fetch_token=fetch, initial=CREDS)
        cancelled = asyncio.ensure_future(coordinator.refresh_once())
        survivor = asyncio.ensure_future(coordinator.refresh_once())
        await asyncio.sleep(0)
        cancelled.cancel()
        await asyncio.sleep(0)
        gate.set()
        return await survivor, cancelled.cancelled()

    token, was_cancelled = asyncio.run(scenario())

    assert token == "token-1"
    assert was_cancelled is True


@pytest.mark.unit
def test_load_returns_snapshot_with_token() -> None:
    async def fetch() -> str:
        return "initial-token"

    coordinator = TokenRefreshCoordinator(fetch_token=fetch, initial=CREDS)

    credentials = asyncio.run(coordinator.load())

    assert credentials.access_token == "initial-token"
    assert CREDS.access_token == ""
