# tests/test_singleflight.py
import asyncio

import pytest

from coursepilot.singleflight import SingleFlight


@pytest.mark.asyncio
async def test_concurrent_callers_share_result():
    flight = SingleFlight()
    calls = []
    release = asyncio.Event()

    async def work():
        calls.append(1)
        await release.wait()
        return "done"

    waiters = [asyncio.ensure_future(flight.do("k", work)) for _ in range(3)]
    await asyncio.sleep(0)
    assert flight.in_flight("k")
    release.set()
    assert await asyncio.gather(*waiters) == ["done", "done", "done"]
    assert calls == [1]


@pytest.mark.asyncio
async def test_key_forgotten_after_completion():
    flight = SingleFlight()

    async def work():
        return 1

    assert await flight.do("k", work) == 1
    await asyncio.sleep(0)
    assert not flight.in_flight("k")


@pytest.mark.asyncio
async def test_distinct_keys_run_separately():
    flight = SingleFlight()
    calls = []

    async def work():
        calls.append(1)
        return len(calls)

    await asyncio.gather(flight.do("a", work), flight.do("b", work))
    assert len(calls) == 2


# --- Edge case tests ---


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter():
    """All joined callers see the shared call's exception."""
    flight = SingleFlight()

    async def work():
        raise RuntimeError("boom")

    results = await asyncio.gather(flight.do("k", work), flight.do("k", work), return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_shared_call():
    """Cancelling one caller leaves the request running for the others."""
    flight = SingleFlight()
    release = asyncio.Event()

    async def work():
        await release.wait()
        return "done"

    first = asyncio.ensure_future(flight.do("k", work))
    second = asyncio.ensure_future(flight.do("k", work))
    await asyncio.sleep(0)
    first.cancel()
    await asyncio.sleep(0)
    release.set()
    assert await second == "done"
    assert first.cancelled()
