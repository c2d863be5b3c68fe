import asyncio
import functools
import logging


class SkipIfRunning:
    """
    Wrap an async job so a tick that arrives while the previous run is still
    in flight is dropped instead of queued.

    ``run()`` puts other coroutines (a manual scan, say) behind the same
    guard, so they never overlap the wrapped job or each other.
    """

    def __init__(self, job, name: str | None = None):
        self.job = job
        self.name = name or getattr(job, "__name__", "job")
        self._lock = asyncio.Lock()
        self.skipped = 0
        functools.update_wrapper(self, job)

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def run(self, job, *args, **kwargs):
        """Await ``job`` under the guard. Returns None without running it if busy."""
        if self._lock.locked():
            self.skipped += 1
            logging.warning("%s still running, %s skipped", self.name, getattr(job, "__name__", "job"))
            return None
        async with self._lock:
            return await job(*args, **kwargs)

    async def __call__(self, *args, **kwargs):
        return await self.run(self.job, *args, **kwargs)
