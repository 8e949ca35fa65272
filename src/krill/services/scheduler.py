from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Set

_log = logging.getLogger("krill.scheduler")

JobFunc = Callable[[], Awaitable[None]]


@dataclass
class Job:
    name: str
    func: JobFunc
    interval: Optional[float] = None
    enabled: bool = True
    next_run: float = field(default_factory=time.monotonic)

    @property
    def one_shot(self) -> bool:
        return self.interval is None


class Scheduler:
    """
    Minimal in-process scheduler for deferred gateway work:
      * jobs are kept in memory only;
      * ``call_later`` fires once, ``ensure_every`` repeats;
      * ``stop()`` cancels the loop, every pending job and every job still
        running, so nothing fires after shutdown.

    Jobs run as separate tasks; a failing job is logged and does not stop the
    loop.
    """

    def __init__(self, *, tick: float = 0.5) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._running: Set[asyncio.Task] = set()
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._tick = tick

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def jobs(self) -> list[str]:
        return sorted(self._jobs)

    async def start(self) -> None:
        if self.running:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name="krill-scheduler")
        _log.info("scheduler started")

    async def stop(self) -> None:
        self._stopped.set()
        async with self._lock:
            dropped = len(self._jobs)
            self._jobs.clear()
        tasks = list(self._running)
        if self._task and not self._task.done():
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._running.clear()
        self._task = None
        if dropped:
            _log.info("scheduler dropped %d pending job(s)", dropped)

    async def call_later(self, name: str, delay: float, func: JobFunc) -> Job:
        """Run ``func`` once after ``delay`` seconds (replaces a job of the same name)."""
        async with self._lock:
            job = Job(name=name, func=func, next_run=time.monotonic() + float(delay))
            self._jobs[name] = job
        _log.info("scheduler one-shot job name=%s delay=%ss", name, delay)
        return job

    async def ensure_every(
        self,
        name: str,
        interval: float,
        func: JobFunc,
        *,
        initial_delay: Optional[float] = None,
    ) -> Job:
        """
        Create or update an "every N seconds" job.  The first run happens after
        ``initial_delay`` (default: one interval).
        """
        interval = float(interval)
        if interval <= 0:
            raise ValueError("interval must be positive")
        now = time.monotonic()
        first = now + (interval if initial_delay is None else float(initial_delay))
        async with self._lock:
            job = self._jobs.get(name)
            if job is None:
                job = Job(name=name, func=func, interval=interval, next_run=first)
                self._jobs[name] = job
                _log.info("scheduler job created name=%s interval=%ss", name, interval)
            else:
                job.func = func
                job.interval = interval
                if job.next_run < now:
                    job.next_run = first
                _log.info("scheduler job updated name=%s interval=%ss", name, interval)
            return job

    async def delete(self, name: str) -> None:
        async with self._lock:
            if self._jobs.pop(name, None) is not None:
                _log.info("scheduler job deleted name=%s", name)

    async def _run(self) -> None:
        try:
            while not self._stopped.is_set():
                async with self._lock:
                    jobs = [j for j in self._jobs.values() if j.enabled]

                if not jobs:
                    await asyncio.sleep(self._tick)
                    continue

                now = time.monotonic()
                due = [j for j in jobs if j.next_run <= now]
                if not due:
                    sleep_for = max(0.01, min(self._tick, min(j.next_run for j in jobs) - now))
                    await asyncio.sleep(sleep_for)
                    continue

                async with self._lock:
                    for job in due:
                        if job.one_shot:
                            self._jobs.pop(job.name, None)
                        else:
                            job.next_run = now + job.interval
                for job in due:
                    task = asyncio.create_task(self._fire(job), name=f"krill-scheduler-job-{job.name}")
                    self._running.add(task)
                    task.add_done_callback(self._running.discard)
                await asyncio.sleep(0)
        except asyncio.CancelledError:
            pass
        finally:
            _log.info("scheduler stopped")

    async def _fire(self, job: Job) -> None:
        try:
            await job.func()
        except asyncio.CancelledError:
            raise
        except Exception:
            _log.warning("scheduler job failed name=%s", job.name, exc_info=True)
