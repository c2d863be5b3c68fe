import asyncio

from utils.scheduler import SkipIfRunning


def test_overlapping_tick_is_skipped():
    runs = []

    async def job(context):
        runs.append(context)
        await asyncio.sleep(0.05)
        return "done"

    guarded = SkipIfRunning(job, name="scan")

    async def main():
        first = asyncio.create_task(guarded("a"))
        await asyncio.sleep(0)
        second = await guarded("b")
        return await first, second

    first, second = asyncio.run(main())
    assert runs == ["a"]
    assert first == "done"
    assert second is None
    assert guarded.skipped == 1
    assert not guarded.running


def test_sequential_ticks_both_run():
    runs = []

    async def job(context):
        runs.append(context)

    guarded = SkipIfRunning(job)

    async def main():
        await guarded(1)
        await guarded(2)

    asyncio.run(main())
    assert runs == [1, 2]
    assert guarded.name == "job"


def test_lock_released_after_failure():
    calls = []

    async def job():
        calls.append(1)
        raise RuntimeError("boom")

    guarded = SkipIfRunning(job)

    async def main():
        for _ in range(2):
            try:
                await guarded()
            except RuntimeError:
                pass

    asyncio.run(main())
    assert calls == [1, 1]


def test_manual_run_shares_the_cycle_guard():
    runs = []

    async def cycle(context):
        runs.append("cycle")
        await asyncio.sleep(0.05)

    async def manual_scan(user_id):
        runs.append(f"manual-{user_id}")
        return {"alerts_sent": 0}

    guarded = SkipIfRunning(cycle, name="scan_cycle")

    async def main():
        tick = asyncio.create_task(guarded(None))
        await asyncio.sleep(0)
        during = await guarded.run(manual_scan, 7)
        await tick
        after = await guarded.run(manual_scan, 7)
        return during, after

    during, after = asyncio.run(main())
    assert during is None
    assert after == {"alerts_sent": 0}
    assert runs == ["cycle", "manual-7"]
    assert guarded.skipped == 1
