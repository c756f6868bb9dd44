# rentmap/service_layer/pipeline/queue.py
from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    backoff_base_s: float
    exponential: bool = True

    def delay_for(self, failed_attempts: int) -> float:
        """Delay before the next try after `failed_attempts` failures (1-based)."""
        if not self.exponential:
            return self.backoff_base_s
        return self.backoff_base_s * (2 ** max(0, failed_attempts - 1))


@dataclass
class Job:
    stage: str
    payload: Any
    priority: int = 0  # lower runs first
    attempts: int = 0
    progress: int = 0
    last_error: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def report(self, pct: int) -> None:
        self.progress = max(0, min(100, int(pct)))


class JobQueue:
    """Priority queue; equal priorities come out in submission order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._q: asyncio.PriorityQueue[tuple[int, int, Job]] = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._unfinished = 0

    def put(self, job: Job) -> None:
        self._unfinished += 1
        self._q.put_nowait((job.priority, next(self._seq), job))

    async def get(self) -> Job:
        _, _, job = await self._q.get()
        return job

    def task_done(self) -> None:
        self._unfinished -= 1
        self._q.task_done()

    async def join(self) -> None:
        await self._q.join()

    def qsize(self) -> int:
        return self._q.qsize()

    def idle(self) -> bool:
        return self._unfinished == 0


Handler = Callable[[Job], Awaitable[None]]
DropHook = Callable[[Job, Exception], Awaitable[None]]


class StageWorkerPool:
    """
    N workers pulling from one queue. A failing job is retried on the same
    worker per the stage's RetryPolicy; once attempts are exhausted it is
    logged, handed to `on_dropped` and forgotten.
    """

    def __init__(
        self,
        name: str,
        queue: JobQueue,
        handler: Handler,
        policy: RetryPolicy,
        *,
        concurrency: int = 1,
        on_dropped: DropHook | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.queue = queue
        self.handler = handler
        self.policy = policy
        self.concurrency = max(1, int(concurrency))
        self.on_dropped = on_dropped
        self._sleep = sleep
        self._tasks: list[asyncio.Task] = []

        self.completed = 0
        self.retried = 0
        self.dropped = 0

    def start(self) -> None:
        if self._tasks:
            return
        for i in range(self.concurrency):
            self._tasks.append(asyncio.create_task(self._worker(i), name=f"{self.name}-worker-{i}"))

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def snapshot(self) -> dict[str, int]:
        return {
            "queued": self.queue.qsize(),
            "workers": len(self._tasks),
            "completed": self.completed,
            "retried": self.retried,
            "dropped": self.dropped,
        }

    async def _worker(self, idx: int) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self.run_job(job)
            finally:
                self.queue.task_done()

    async def run_job(self, job: Job) -> None:
        while True:
            job.attempts += 1
            try:
                await self.handler(job)
                self.completed += 1
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                job.last_error = f"{type(e).__name__}: {e}"
                if job.attempts >= self.policy.max_attempts:
                    self.dropped += 1
                    log.error(
                        "%s job %s dropped after %s attempts: %s",
                        self.name,
                        job.id,
                        job.attempts,
                        job.last_error,
                    )
                    await self._dropped(job, e)
                    return

                delay = self.policy.delay_for(job.attempts)
                self.retried += 1
                log.warning(
                    "%s job %s attempt %s/%s failed (%s); retrying in %.1fs",
                    self.name,
                    job.id,
                    job.attempts,
                    self.policy.max_attempts,
                    job.last_error,
                    delay,
                )
                await self._sleep(delay)

    async def _dropped(self, job: Job, exc: Exception) -> None:
        if self.on_dropped is None:
            return
        try:
            await self.on_dropped(job, exc)
        except Exception:
            log.exception("%s on_dropped hook failed for job %s", self.name, job.id)
