import asyncio
from datetime import timedelta

import pytest

from casegen.core.scheduling import AsyncioScheduler, VirtualScheduler


def test_call_later_fires_when_due(scheduler):
    fired = []
    scheduler.call_later(10, lambda: fired.append(scheduler.now()))
    start = scheduler.now()

    scheduler.advance(9.9)
    assert fired == []

    scheduler.advance(0.1)
    assert fired == [start + timedelta(seconds=10)]


def test_cancelled_task_never_fires(scheduler):
    fired = []
    task = scheduler.call_later(5, lambda: fired.append(1))
    task.cancel()
    task.cancel()

    scheduler.advance(60)

    assert fired == []
    assert task.cancelled
    assert scheduler.pending == 0


def test_call_every_repeats_until_cancelled(scheduler):
    fired = []
    task = scheduler.call_every(10, lambda: fired.append(1))

    scheduler.advance(35)
    assert len(fired) == 3

    task.cancel()
    scheduler.advance(100)
    assert len(fired) == 3


def test_callbacks_fire_in_due_order(scheduler):
    order = []
    scheduler.call_later(20, lambda: order.append("late"))
    scheduler.call_later(5, lambda: order.append("early"))

    scheduler.advance(30)

    assert order == ["early", "late"]


def test_failing_callback_does_not_stop_repeats(scheduler):
    calls = []

    def boom():
        calls.append(1)
        raise RuntimeError("boom")

    scheduler.call_every(1, boom)
    scheduler.advance(3)

    assert len(calls) == 3


def test_virtual_clock_only_moves_on_advance():
    scheduler = VirtualScheduler()
    start = scheduler.now()
    assert scheduler.now() == start
    scheduler.advance(90)
    assert scheduler.now() - start == timedelta(seconds=90)


@pytest.mark.asyncio
async def test_asyncio_scheduler_runs_and_cancels():
    scheduler = AsyncioScheduler()
    fired = []
    scheduler.call_later(0.01, lambda: fired.append("once"))
    cancelled = scheduler.call_later(0.01, lambda: fired.append("cancelled"))
    cancelled.cancel()
    repeating = scheduler.call_every(0.01, lambda: fired.append("tick"))

    await asyncio.sleep(0.1)
    repeating.cancel()
    ticks = fired.count("tick")
    await asyncio.sleep(0.05)

    assert "once" in fired
    assert "cancelled" not in fired
    assert ticks >= 2
    assert fired.count("tick") == ticks
