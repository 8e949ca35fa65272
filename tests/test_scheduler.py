from __future__ import annotations

import asyncio

import pytest

from krill.services.scheduler import Scheduler


@pytest.mark.anyio
async def test_call_later_fires_once():
    fired = []
    sched = Scheduler(tick=0.01)
    await sched.start()

    async def job():
        fired.append("x")

    await sched.call_later("once", 0.02, job)
    await asyncio.sleep(0.15)
    await sched.stop()

    assert fired == ["x"]
    assert sched.jobs() == []


@pytest.mark.anyio
async def test_every_runs_after_initial_delay_and_repeats():
    fired = []
    sched = Scheduler(tick=0.01)
    await sched.start()

    async def job():
        fired.append(1)

    await sched.ensure_every("tick", 0.03, job, initial_delay=0)
    await asyncio.sleep(0.16)
    await sched.stop()
    assert len(fired) >= 3


@pytest.mark.anyio
async def test_stop_cancels_pending_jobs():
    fired = []
    sched = Scheduler(tick=0.01)
    await sched.start()

    async def job():
        fired.append(1)

    await sched.call_later("later", 0.1, job)
    await sched.stop()
    await asyncio.sleep(0.2)

    assert fired == []
    assert not sched.running
    assert sched.jobs() == []


@pytest.mark.anyio
async def test_stop_cancels_running_job_and_failures_do_not_kill_loop():
    started = asyncio.Event()
    cancelled = []
    sched = Scheduler(tick=0.01)
    await sched.start()

    async def broken():
        raise RuntimeError("boom")

    async def slow():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    await sched.call_later("broken", 0, broken)
    await sched.call_later("slow", 0.02, slow)
    await asyncio.wait_for(started.wait(), 1)
    assert sched.running
    await sched.stop()
    assert cancelled == [True]


@pytest.mark.anyio
async def test_delete_and_invalid_interval():
    sched = Scheduler()

    async def job():
        return None

    await sched.ensure_every("a", 5, job)
    assert sched.jobs() == ["a"]
    await sched.delete("a")
    assert sched.jobs() == []
    with pytest.raises(ValueError):
        await sched.ensure_every("b", 0, job)
