# ABOUTME: Tests the per-key single-writer sequencer and the monotonic ingestion clock.
# ABOUTME: Work for one key runs in timestamp order; other keys never wait.

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from src.pipeline import KeyedSequencer, MonotonicClock

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_clock_never_repeats_or_goes_back():
    readings = iter([T0, T0, T0 - timedelta(seconds=3), T0 + timedelta(seconds=1)])
    clock = MonotonicClock(wall=lambda: next(readings))
    stamps = [clock.now() for _ in range(4)]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 4
    assert stamps[-1] == T0 + timedelta(seconds=1)


@pytest.mark.asyncio
async def test_same_key_runs_in_timestamp_order_despite_arrival_order():
    sequencer = KeyedSequencer()
    order = []

    async def work(ticket, label, delay):
        # later tickets reach the sequencer first
        await asyncio.sleep(delay)
        async with sequencer.turn(ticket):
            order.append(label)
            await asyncio.sleep(0.01)

    first = sequencer.register("k", T0)
    second = sequencer.register("k", T0 + timedelta(seconds=1))
    third = sequencer.register("k", T0 + timedelta(seconds=2))
    await asyncio.gather(work(third, "third", 0.0), work(second, "second", 0.01), work(first, "first", 0.03))

    assert order == ["first", "second", "third"]
    assert sequencer.pending("k") == 0


@pytest.mark.asyncio
async def test_other_keys_are_not_blocked():
    sequencer = KeyedSequencer()
    release = asyncio.Event()
    order = []

    async def slow():
        async with sequencer.turn(sequencer.register("a", T0)):
            await release.wait()
            order.append("a")

    async def fast():
        async with sequencer.turn(sequencer.register("b", T0 + timedelta(seconds=1))):
            order.append("b")
        release.set()

    await asyncio.gather(slow(), fast())
    assert order == ["b", "a"]


@pytest.mark.asyncio
async def test_cancelled_ticket_does_not_stall_the_key():
    sequencer = KeyedSequencer()
    head = sequencer.register("k", T0)
    abandoned = sequencer.register("k", T0 + timedelta(seconds=1))
    tail = sequencer.register("k", T0 + timedelta(seconds=2))

    await sequencer.acquire(head)
    waiter = asyncio.ensure_future(sequencer.acquire(abandoned))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    sequencer.release(head)

    await asyncio.wait_for(sequencer.acquire(tail), timeout=1.0)
    sequencer.release(tail)
    assert sequencer.pending("k") == 0
