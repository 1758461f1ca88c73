"""
Tests for SingleFlightGate.
"""

import asyncio

import pytest

from marketfeed.services import SingleFlightGate


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    gate = SingleFlightGate()
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return "done"

    results = await asyncio.gather(*(gate.run("k", work) for _ in range(5)))

    assert results == ["done"] * 5
    assert peak == 1
    assert gate.get_in_flight_count() == 0
    assert gate.get_stats().acquired == 5
    assert gate.get_stats().contended >= 1


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    gate = SingleFlightGate()
    both_inside = asyncio.Event()
    inside = 0

    async def work():
        nonlocal inside
        inside += 1
        if inside == 2:
            both_inside.set()
        await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(gate.run("a", work), gate.run("b", work))
    assert both_inside.is_set()


@pytest.mark.asyncio
async def test_slot_released_when_fn_raises():
    gate = SingleFlightGate()

    async def boom():
        raise RuntimeError("upstream exploded")

    with pytest.raises(RuntimeError):
        await gate.run("k", boom)

    async def ok():
        return 42

    assert await asyncio.wait_for(gate.run("k", ok), timeout=1) == 42
    assert gate.get_in_flight_keys() == []


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_the_work():
    gate = SingleFlightGate()
    release = asyncio.Event()
    finished = asyncio.Event()

    async def slow_fetch():
        await release.wait()
        finished.set()
        return "value"

    caller = asyncio.create_task(gate.run("k", slow_fetch))
    await asyncio.sleep(0.01)
    caller.cancel()
    with pytest.raises(asyncio.CancelledError):
        await caller

    # The work is still holding the slot
    assert gate.get_in_flight_keys() == ["k"]

    release.set()
    await asyncio.wait_for(finished.wait(), timeout=1)
    await asyncio.sleep(0)
    assert gate.get_in_flight_count() == 0


@pytest.mark.asyncio
async def test_next_holder_waits_for_cancelled_callers_work():
    gate = SingleFlightGate()
    release = asyncio.Event()
    order: list[str] = []

    async def first():
        await release.wait()
        order.append("first")

    async def second():
        order.append("second")

    caller = asyncio.create_task(gate.run("k", first))
    await asyncio.sleep(0.01)
    caller.cancel()

    waiter = asyncio.create_task(gate.run("k", second))
    await asyncio.sleep(0.01)
    assert order == []

    release.set()
    await asyncio.wait_for(waiter, timeout=1)
    assert order == ["first", "second"]


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_no_record():
    gate = SingleFlightGate()
    release = asyncio.Event()

    async def hold():
        await release.wait()

    holder = asyncio.create_task(gate.run("k", hold))
    await asyncio.sleep(0.01)
    waiter = asyncio.create_task(gate.run("k", hold))
    await asyncio.sleep(0.01)

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    release.set()
    await holder
    assert gate.get_in_flight_count() == 0
